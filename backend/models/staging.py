"""
BrokerDesk - Staging documents (data_tmp)

Submissions land here before an admin reviews them. Documents are written
by the mobile/web clients as well, so the stored shape stays camelCase.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class StagingType(str, Enum):
    LOAN = "loan"
    INSURANCE = "insurance"
    TICKET = "ticket"
    CHAT = "chat"


class StagingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    APPROVED = "approved"
    REJECTED = "rejected"


VALID_STAGING_STATUSES = [s.value for s in StagingStatus]

# Keys of the per-type buckets in the pending listing / stats
TYPE_BUCKETS = {
    StagingType.LOAN: "loans",
    StagingType.INSURANCE: "insurances",
    StagingType.TICKET: "tickets",
    StagingType.CHAT: "chats",
}


class StagingDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    type: StagingType
    user_id: Optional[str] = Field(default=None, alias="userId")
    form_data: Dict[str, Any] = Field(default_factory=dict, alias="formData")
    # "active" is used by chat messages, hence str rather than StagingStatus
    status: str = StagingStatus.PENDING.value
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")
    migrated_at: Optional[datetime] = Field(default=None, alias="migratedAt")
    mongo_id: Optional[str] = Field(default=None, alias="mongoId")
    rejection_reason: Optional[str] = Field(default=None, alias="rejectionReason")
    rejected_at: Optional[datetime] = Field(default=None, alias="rejectedAt")
    rejected_by: Optional[str] = Field(default=None, alias="rejectedBy")

    @property
    def is_approved(self) -> bool:
        return self.status == StagingStatus.APPROVED.value

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def empty_stats() -> Dict[str, int]:
    stats = {"total": 0}
    for bucket in TYPE_BUCKETS.values():
        stats[bucket] = 0
    return stats


def pending_stats(docs) -> Dict[str, int]:
    """Per-type counts of a pending listing"""
    stats = empty_stats()
    for doc in docs:
        stats["total"] += 1
        stats[TYPE_BUCKETS[doc.type]] += 1
    return stats
