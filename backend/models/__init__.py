"""
BrokerDesk - Models Package

from models import StagingDocument, LoanRecord, ExternalPrincipal, etc.
"""

# Staging (data_tmp)
from .staging import (
    StagingType,
    StagingStatus,
    StagingDocument,
    VALID_STAGING_STATUSES,
    TYPE_BUCKETS,
)

# System of record
from .records import (
    RecordStatus,
    CreatorKind,
    LoanType,
    InsuranceType,
    TicketStatus,
    TicketPriority,
    LoanRecord,
    InsuranceRecord,
    TicketRecord,
)

# Auth
from .auth import (
    ExternalPrincipal,
    InternalPrincipal,
    Principal,
    AdminLogin,
    OtpRequest,
    OtpVerify,
)

# Request bodies
from .verification import (
    ApproveRequest,
    TicketApproveRequest,
    RejectRequest,
    StatusUpdateRequest,
    SubmissionCreate,
    DeviceTokenRequest,
)

__all__ = [
    "StagingType",
    "StagingStatus",
    "StagingDocument",
    "VALID_STAGING_STATUSES",
    "TYPE_BUCKETS",
    "RecordStatus",
    "CreatorKind",
    "LoanType",
    "InsuranceType",
    "TicketStatus",
    "TicketPriority",
    "LoanRecord",
    "InsuranceRecord",
    "TicketRecord",
    "ExternalPrincipal",
    "InternalPrincipal",
    "Principal",
    "AdminLogin",
    "OtpRequest",
    "OtpVerify",
    "ApproveRequest",
    "TicketApproveRequest",
    "RejectRequest",
    "StatusUpdateRequest",
    "SubmissionCreate",
    "DeviceTokenRequest",
]
