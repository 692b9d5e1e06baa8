"""
BrokerDesk - Request bodies for the verification and submission routes
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ApproveRequest(BaseModel):
    adminNotes: Optional[str] = None


class TicketApproveRequest(BaseModel):
    adminNotes: Optional[str] = None
    priority: Optional[str] = None


class RejectRequest(BaseModel):
    rejectionReason: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: str


class SubmissionCreate(BaseModel):
    formData: Dict[str, Any]


class DeviceTokenRequest(BaseModel):
    token: str = Field(min_length=1)
