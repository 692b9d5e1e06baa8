"""
BrokerDesk - System-of-record documents (loans, insurances, tickets)

A record is created exactly once, when an admin approves the staging
document it came from (stagingDocId is the back-reference).
Domain fields come straight from the submitted formData and stay camelCase;
type-specific loan/insurance fields not declared here are kept as-is.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class CreatorKind(str, Enum):
    ADMIN = "admin"
    USER = "user"


class LoanType(str, Enum):
    PERSONAL = "Personal"
    HOME = "Home"
    BUSINESS = "Business"
    EDUCATION = "Education"
    GOLD = "Gold"
    MACHINERY = "Machinery"
    SOLAR = "Solar"
    PROPERTY = "Property"
    LIFE_INSURANCE = "Life Insurance"
    HEALTH_INSURANCE = "Health Insurance"
    GENERAL_INSURANCE = "General Insurance"


class InsuranceType(str, Enum):
    LIFE = "Life Insurance"
    HEALTH = "Health Insurance"
    GENERAL = "General Insurance"
    ALL = "All Insurance"


class EmploymentType(str, Enum):
    SALARIED = "Salaried"
    SELF_EMPLOYED = "Self-Employed"
    BUSINESS_OWNER = "Business Owner"
    PROFESSIONAL = "Professional"


class TicketStatus(str, Enum):
    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"
    CLOSED = "Closed"


class TicketPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    URGENT = "Urgent"


class _RecordModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        coerce_numbers_to_str=True,
        extra="allow",
    )

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    staging_doc_id: Optional[str] = None
    admin_notes: str = ""
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class _ApplicationRecord(_RecordModel):
    """Fields shared by loan and insurance applications"""
    full_name: str = Field(min_length=1)
    email: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    user_id: Optional[str] = None
    employment_type: Optional[EmploymentType] = None
    monthly_income: Optional[str] = None
    city_state: str = ""
    status: RecordStatus = RecordStatus.PENDING
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    created_by: CreatorKind = CreatorKind.USER
    created_by_id: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("employment_type", mode="before")
    @classmethod
    def blank_is_unset(cls, v):
        return None if v == "" else v


class LoanRecord(_ApplicationRecord):
    loan_type: LoanType
    loan_amount: float
    tenure: Optional[str] = None
    purpose: Optional[str] = None
    consent: bool


class InsuranceRecord(_ApplicationRecord):
    insurance_type: InsuranceType
    age: Optional[int] = Field(default=None, ge=18, le=100)
    coverage_amount: Optional[str] = None
    insurance_term: Optional[str] = None
    medical_history: Optional[str] = None
    existing_policies: Optional[str] = None
    remarks: Optional[str] = None


class TicketRecord(_RecordModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )

    ticket_number: str = Field(pattern=r"^TKT-\d{6,}$")
    subject: str = Field(min_length=1)
    description: Optional[str] = None
    status: TicketStatus = TicketStatus.OPEN
    priority: TicketPriority = TicketPriority.MEDIUM
    user_id: Optional[str] = None
    loan_id: Optional[str] = None
    assigned_to: Optional[str] = None
    notes: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator("priority", mode="before")
    @classmethod
    def normalise_priority(cls, v):
        if isinstance(v, str):
            for p in TicketPriority:
                if p.value.lower() == v.strip().lower():
                    return p
        return v


# Fields echoed back when a record fails validation
PREVIEW_FIELDS = {
    "loan": ["fullName", "email", "phone", "loanType", "loanAmount", "createdBy", "createdById"],
    "insurance": ["fullName", "email", "phone", "insuranceType", "coverageAmount", "createdBy", "createdById"],
    "ticket": ["ticketNumber", "subject", "priority", "userId"],
}
