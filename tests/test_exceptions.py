"""Tests for Leadhooks exception hierarchy."""

import pytest

from leadhooks.exceptions import (
    LeadhooksError,
    NotFoundError,
    StorageError,
    ValidationError,
)


class TestLeadhooksError:
    """Tests for the base LeadhooksError class."""

    def test_error_message(self):
        """Should store and return message."""
        error = LeadhooksError("Something went wrong")
        assert error.message == "Something went wrong"
        assert str(error) == "Something went wrong"

    def test_error_code(self):
        """Should have default error code."""
        assert LeadhooksError("test").code == "leadhooks_error"

    def test_to_dict(self):
        """Should convert to API-friendly dict."""
        assert LeadhooksError("Something went wrong").to_dict() == {
            "error": {
                "code": "leadhooks_error",
                "message": "Something went wrong",
            }
        }


class TestValidationError:
    """Tests for ValidationError."""

    def test_field_in_message(self):
        error = ValidationError("url", "URL must use HTTPS protocol")
        assert error.field == "url"
        assert error.message == "url: URL must use HTTPS protocol"
        assert error.code == "validation_error"

    def test_to_dict_includes_field(self):
        assert ValidationError("events", "bad").to_dict() == {
            "error": {
                "code": "validation_error",
                "field": "events",
                "message": "events: bad",
            }
        }


class TestNotFoundError:
    """Tests for NotFoundError."""

    def test_attributes(self):
        error = NotFoundError("webhook", "whk_123")
        assert error.resource_type == "webhook"
        assert error.resource_id == "whk_123"
        assert error.message == "webhook not found: whk_123"
        assert error.code == "not_found"

    def test_to_dict(self):
        result = NotFoundError("webhook", "whk_123").to_dict()
        assert result["error"]["resource_type"] == "webhook"
        assert result["error"]["resource_id"] == "whk_123"


class TestHierarchy:
    """All errors share the LeadhooksError base."""

    @pytest.mark.parametrize(
        ("error", "code"),
        [
            (ValidationError("f", "m"), "validation_error"),
            (NotFoundError("webhook", "x"), "not_found"),
            (StorageError("db down"), "storage_error"),
        ],
    )
    def test_subclass_codes(self, error, code):
        assert isinstance(error, LeadhooksError)
        assert error.code == code

    def test_catch_all(self):
        with pytest.raises(LeadhooksError):
            raise StorageError("db down")
