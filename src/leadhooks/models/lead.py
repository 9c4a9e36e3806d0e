"""CRM entities that trigger webhook events.

Leads and their activities are owned by the CRM; these models describe only
the fields the payload formatter reads from them.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class Lead(BaseModel):
    """A sales lead as stored by the CRM.

    Attributes:
        id: Lead identifier.
        name: Contact name.
        email: Contact email.
        company: Company name (optional).
        phone: Phone number (optional).
        budget: Budget range as entered (optional).
        project_type: Kind of project requested (optional).
        message: Original enquiry text.
        source: Where the lead came from (optional).
        status: Pipeline status.
        created_at: When the lead was created.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    email: str
    company: str | None = None
    phone: str | None = None
    budget: str | None = None
    project_type: str | None = None
    message: str = ""
    source: str | None = None
    status: str = Field(default="new", description="Pipeline status")
    created_at: datetime


class LeadActivity(BaseModel):
    """An activity logged against a lead (note, call, status change...)."""

    model_config = ConfigDict(extra="ignore")

    id: str
    lead_id: str | None = None
    type: str = Field(description="Activity type")
    description: str
    created_at: datetime


__all__ = [
    "Lead",
    "LeadActivity",
]
