"""
BrokerDesk - Event Logger

Audit trail for verification actions (approve, reject, status changes).
Single function to call from any route/service.
"""

import uuid
import logging

from config import db, now_iso

logger = logging.getLogger("event_logger")


async def log_event(
    action: str,
    entity_type: str,
    entity_id: str,
    user: str = "system",
    details: dict = None,
    related: dict = None
):
    """
    Write a single event to the event_log collection.

    Args:
        action: e.g. approve_loan, reject_insurance, approve_ticket, update_status
        entity_type: loan | insurance | ticket | chat
        entity_id: staging document id
        user: actor id (users.id for admins, Firebase uid for customers)
        details: free-form dict (reason, old_status, new_status, etc.)
        related: linked ids (mongo_id, user_id, ...)
    """
    await db.event_log.insert_one({
        "id": str(uuid.uuid4()),
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "user": user,
        "details": details or {},
        "related": related or {},
        "created_at": now_iso()
    })


async def log_event_safe(*args, **kwargs):
    """log_event for post-commit callers: a failed audit write is logged, not raised"""
    try:
        await log_event(*args, **kwargs)
    except Exception as e:
        logger.error(f"[AUDIT] Failed to write event {args[:1]}: {e}")


async def list_events(action: str = None, entity_id: str = None, limit: int = 100, skip: int = 0) -> dict:
    query = {}
    if action:
        query["action"] = action
    if entity_id:
        query["$or"] = [
            {"entity_id": entity_id},
            {"related.mongo_id": entity_id},
        ]

    events = await db.event_log.find(
        query, {"_id": 0}
    ).sort("created_at", -1).skip(skip).limit(limit).to_list(limit)
    total = await db.event_log.count_documents(query)

    return {"events": events, "count": len(events), "total": total}
