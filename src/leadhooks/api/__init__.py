"""FastAPI REST API for Leadhooks.

This module provides the admin API for managing webhooks.

Example:
    ```python
    import uvicorn
    from leadhooks.api import create_app

    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=8000)
    ```
"""

from .app import create_app
from .router import router

__all__ = [
    "create_app",
    "router",
]
