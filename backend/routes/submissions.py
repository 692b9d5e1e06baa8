"""
BrokerDesk - Routes Submissions
Customers drop loan / insurance / ticket requests into the staging store.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from starlette.concurrency import run_in_threadpool

from email_service import email_service
from models.auth import ExternalPrincipal
from models.staging import StagingType
from models.verification import DeviceTokenRequest, SubmissionCreate
from routes.auth import require_external_user
from services.notification_gateway import (
    NotificationGateway,
    NotificationHistory,
    PushChannel,
    get_notification_gateway,
    get_notification_history,
    get_push_channel,
    new_submission_notification,
    user_topic,
)
from services.errors import NotificationFailed
from services.staging_store import StagingStore, get_staging_store

logger = logging.getLogger("submissions")

router = APIRouter(prefix="/submissions", tags=["Submissions"])

SUBMITTABLE = (StagingType.LOAN, StagingType.INSURANCE, StagingType.TICKET)


async def _alert_reviewers(gateway: NotificationGateway, doc_id: str, type: StagingType, form_data: dict):
    await gateway.publish(new_submission_notification(doc_id, type, form_data))
    summary = {k: form_data[k] for k in ("fullName", "email", "subject") if form_data.get(k)}
    await run_in_threadpool(email_service.send_new_submission_alert, type.value, doc_id, summary)


@router.get("/mine")
async def my_submissions(
    principal: ExternalPrincipal = Depends(require_external_user),
    staging: StagingStore = Depends(get_staging_store),
):
    docs = await staging.list_for_user(principal.uid)
    return {"success": True, "data": [d.to_api() for d in docs], "count": len(docs)}


# ==================== DEVICES ====================

@router.post("/device-token")
async def register_device(
    data: DeviceTokenRequest,
    principal: ExternalPrincipal = Depends(require_external_user),
    push: PushChannel = Depends(get_push_channel),
):
    """Subscribe a device to the caller's status topic"""
    topic = user_topic(principal.uid)
    try:
        await push.subscribe([data.token], topic)
    except NotificationFailed as e:
        raise HTTPException(status_code=503, detail=e.message)
    return {"success": True, "topic": topic}


@router.delete("/device-token")
async def unregister_device(
    data: DeviceTokenRequest,
    principal: ExternalPrincipal = Depends(require_external_user),
    push: PushChannel = Depends(get_push_channel),
):
    topic = user_topic(principal.uid)
    try:
        await push.unsubscribe([data.token], topic)
    except NotificationFailed as e:
        raise HTTPException(status_code=503, detail=e.message)
    return {"success": True, "topic": topic}


# ==================== NOTIFICATIONS ====================

@router.get("/notifications")
async def notification_history(
    limit: int = Query(50, ge=1, le=100),
    principal: ExternalPrincipal = Depends(require_external_user),
    history: NotificationHistory = Depends(get_notification_history),
):
    """Notifications delivered to the caller's topic, newest first"""
    notifications = await history.list_for_topic(user_topic(principal.uid), limit)
    return {"success": True, "notifications": notifications, "count": len(notifications)}


@router.put("/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    principal: ExternalPrincipal = Depends(require_external_user),
    history: NotificationHistory = Depends(get_notification_history),
):
    notification = await history.mark_read(notification_id, user_topic(principal.uid))
    return {"success": True, "notification": notification}


# ==================== SUBMISSIONS ====================

@router.post("/{type}")
async def submit(
    type: StagingType,
    data: SubmissionCreate,
    background_tasks: BackgroundTasks,
    principal: ExternalPrincipal = Depends(require_external_user),
    staging: StagingStore = Depends(get_staging_store),
    gateway: NotificationGateway = Depends(get_notification_gateway),
):
    if type not in SUBMITTABLE:
        raise HTTPException(status_code=400, detail=f"Cannot submit a {type.value}")

    form_data = dict(data.formData)
    if principal.email and not form_data.get("email"):
        form_data["email"] = principal.email

    doc_id = await staging.add(type, principal.uid, form_data)
    logger.info(f"[SUBMIT] {type.value} {doc_id} from {principal.uid}")

    background_tasks.add_task(_alert_reviewers, gateway, doc_id, type, form_data)

    return {"success": True, "message": "Submitted for review", "firestoreDocId": doc_id, "status": "pending"}
