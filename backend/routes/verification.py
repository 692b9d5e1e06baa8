"""
BrokerDesk - Routes Verification
Admin review of staging submissions: approve (migrate), reject, status, pending list.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends

from models.auth import Principal
from models.staging import StagingType
from models.verification import ApproveRequest, RejectRequest, StatusUpdateRequest, TicketApproveRequest
from routes.auth import get_principal, require_internal_admin
from services.approval_workflow import ApprovalWorkflow
from services.event_logger import list_events
from services.notification_gateway import NotificationGateway, get_notification_gateway
from services.repositories import UserRepository, default_record_repositories
from services.staging_store import StagingStore, get_staging_store

router = APIRouter(prefix="/verify", tags=["Verification"])


def get_workflow(
    background_tasks: BackgroundTasks,
    staging: StagingStore = Depends(get_staging_store),
    gateway: NotificationGateway = Depends(get_notification_gateway),
) -> ApprovalWorkflow:
    return ApprovalWorkflow(
        staging,
        default_record_repositories(),
        UserRepository(),
        gateway,
        tasks=background_tasks,
    )


# ==================== LISTING ====================

@router.get("/pending")
async def pending_submissions(
    type: Optional[StagingType] = None,
    principal: Principal = Depends(get_principal),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    """Pending submissions, newest first; grouped with counts when no type is given"""
    result = await workflow.list_pending(type)
    return {"success": True, **result}


@router.get("/events")
async def verification_events(
    action: Optional[str] = None,
    entity_id: Optional[str] = None,
    limit: int = 100,
    skip: int = 0,
    admin=Depends(require_internal_admin),
):
    """Audit trail of approve / reject / status changes"""
    return await list_events(action=action, entity_id=entity_id, limit=limit, skip=skip)


# ==================== LOANS ====================

@router.post("/approve-loan/{doc_id}")
async def approve_loan(
    doc_id: str,
    data: ApproveRequest = ApproveRequest(),
    principal: Principal = Depends(get_principal),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    result = await workflow.approve(doc_id, StagingType.LOAN, principal, data.adminNotes)
    return {"success": True, "message": "Loan approved and migrated", **result}


@router.post("/reject-loan/{doc_id}")
async def reject_loan(
    doc_id: str,
    data: RejectRequest = RejectRequest(),
    principal: Principal = Depends(get_principal),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    result = await workflow.reject(doc_id, StagingType.LOAN, principal, data.rejectionReason)
    return {"success": True, "message": "Loan rejected", **result}


# ==================== INSURANCE ====================

@router.post("/approve-insurance/{doc_id}")
async def approve_insurance(
    doc_id: str,
    data: ApproveRequest = ApproveRequest(),
    principal: Principal = Depends(get_principal),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    result = await workflow.approve(doc_id, StagingType.INSURANCE, principal, data.adminNotes)
    return {"success": True, "message": "Insurance approved and migrated", **result}


@router.post("/reject-insurance/{doc_id}")
async def reject_insurance(
    doc_id: str,
    data: RejectRequest = RejectRequest(),
    principal: Principal = Depends(get_principal),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    result = await workflow.reject(doc_id, StagingType.INSURANCE, principal, data.rejectionReason)
    return {"success": True, "message": "Insurance rejected", **result}


# ==================== TICKETS ====================

@router.post("/approve-ticket/{doc_id}")
async def approve_ticket(
    doc_id: str,
    data: TicketApproveRequest = TicketApproveRequest(),
    principal: Principal = Depends(get_principal),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    result = await workflow.approve_ticket(doc_id, principal, data.adminNotes, data.priority)
    return {"success": True, "message": "Ticket approved and opened", **result}


# ==================== STATUS ====================

@router.post("/update-status/{doc_id}")
async def update_status(
    doc_id: str,
    data: StatusUpdateRequest,
    principal: Principal = Depends(get_principal),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    result = await workflow.update_status(doc_id, data.status, principal)
    return {"success": True, "message": f"Status updated to {data.status}", **result}
