"""
BrokerDesk - Approval Workflow

Moves a submission from the staging store (data_tmp) into the system of record.

    pending -> processing -> approved | rejected
    rejected -> approved is allowed (re-review)

Guarantees:
- a staging doc is "approved" iff exactly one record references it (stagingDocId)
- a record is never stored without createdById
- validation / creator failures leave the staging doc untouched, so retry is safe
- notifications run after the commit and can never fail the call
"""

import logging
from typing import Any, Dict, Mapping, Optional

from fastapi import BackgroundTasks

from config import APPROVAL_FIELD_DEFAULTS, utcnow
from models.auth import Principal
from models.records import RecordStatus, TicketStatus
from models.staging import (
    StagingDocument,
    StagingStatus,
    StagingType,
    TYPE_BUCKETS,
    VALID_STAGING_STATUSES,
    pending_stats,
)
from services.errors import AlreadyApproved, InvalidStatus, TypeMismatch
from services.event_logger import log_event_safe
from services.identity_resolver import IdentityResolver
from services.notification_gateway import (
    Notification,
    NotificationGateway,
    approval_notification,
    rejection_notification,
    ticket_notification,
)
from services.repositories import RecordRepository, UserRepository
from services.staging_store import StagingStore

logger = logging.getLogger("approval_workflow")

DEFAULT_REJECTION_REASON = "Not approved"
DEFAULT_TICKET_PRIORITY = "medium"
APPROVED = StagingStatus.APPROVED.value

# Staging types whose formData receives APPROVAL_FIELD_DEFAULTS
DEFAULTED_TYPES = (StagingType.LOAN, StagingType.INSURANCE)


class ApprovalWorkflow:

    def __init__(
        self,
        staging: StagingStore,
        records: Mapping[StagingType, RecordRepository],
        users: UserRepository,
        gateway: NotificationGateway,
        field_defaults: Optional[Dict[str, Any]] = None,
        tasks: Optional[BackgroundTasks] = None,
    ):
        self.staging = staging
        self.records = records
        self.resolver = IdentityResolver(users)
        self.gateway = gateway
        self.field_defaults = APPROVAL_FIELD_DEFAULTS if field_defaults is None else field_defaults
        self.tasks = tasks

    # ==================== HELPERS ====================

    async def _fetch(self, doc_id: str, expected: StagingType) -> StagingDocument:
        doc = await self.staging.get(doc_id)
        if doc.type != expected:
            raise TypeMismatch(
                f"Document is not a {expected.value} (got {doc.type.value})",
                {"expected": expected.value, "actual": doc.type.value},
            )
        return doc

    @staticmethod
    def _ensure_not_approved(doc: StagingDocument):
        if doc.is_approved:
            raise AlreadyApproved(
                f"{doc.type.value.capitalize()} already approved",
                {"mongoId": doc.mongo_id},
            )

    def _apply_defaults(self, doc: StagingDocument) -> Dict[str, Any]:
        form = {k: v for k, v in doc.form_data.items() if k != "id"}
        if doc.type not in DEFAULTED_TYPES:
            return form
        for key, value in self.field_defaults.items():
            if form.get(key) is None:
                form[key] = value
                logger.info(f"[APPROVAL] {doc.id}: {key} unset, defaulted to {value!r}")
        return form

    async def _commit(self, doc: StagingDocument, repo: RecordRepository, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert the record, then flip the staging doc; undo the insert if the flip loses"""
        record = await repo.create(data)
        try:
            committed = await self.staging.transition(
                doc.id,
                APPROVED,
                {"migratedAt": utcnow(), "mongoId": record["id"]},
                forbid=(APPROVED,),
            )
        except Exception:
            await repo.delete(record["id"])
            raise
        if not committed:
            await repo.delete(record["id"])
            raise AlreadyApproved(f"{doc.type.value.capitalize()} already approved")
        return record

    async def _publish(self, notification: Notification):
        try:
            await self.gateway.publish(notification)
        except Exception as e:
            logger.warning(f"[NOTIFY] Dropped notification for {notification.data.get('firestoreDocId')}: {e}")

    async def _notify(self, notification: Notification):
        if self.tasks is not None:
            self.tasks.add_task(self._publish, notification)
        else:
            await self._publish(notification)

    # ==================== APPROVE ====================

    async def approve(self, doc_id: str, expected: StagingType, principal: Principal,
                      admin_notes: Optional[str] = None) -> Dict[str, str]:
        """Approve a loan or insurance submission; returns {mongoId, firestoreDocId}"""
        doc = await self._fetch(doc_id, expected)
        self._ensure_not_approved(doc)

        creator = await self.resolver.resolve(doc, principal)
        now = utcnow()
        data = {
            **self._apply_defaults(doc),
            "stagingDocId": doc.id,
            "userId": creator.owner_id,
            "status": RecordStatus.APPROVED.value,
            "adminNotes": admin_notes or "",
            "approvedAt": now,
            "approvedBy": principal.actor_id,
            "createdBy": creator.kind.value,
            "createdById": creator.creator_id,
            "createdAt": doc.created_at or now,
            "updatedAt": now,
        }

        record = await self._commit(doc, self.records[expected], data)
        logger.info(
            f"[APPROVAL] {expected.value} {doc.id} -> {record['id']} "
            f"(createdBy={creator.kind.value}:{creator.creator_id}, by {principal.actor_id})"
        )

        await log_event_safe(
            f"approve_{expected.value}", expected.value, doc.id, user=principal.actor_id,
            details={"admin_notes": admin_notes or "", "created_by": creator.kind.value},
            related={"mongo_id": record["id"], "user_id": creator.owner_id},
        )
        await self._notify(approval_notification(doc, record))

        return {"mongoId": record["id"], "firestoreDocId": doc.id}

    async def approve_ticket(self, doc_id: str, principal: Principal, admin_notes: Optional[str] = None,
                             priority: Optional[str] = None) -> Dict[str, str]:
        """Open a ticket from a staging submission; no creator resolution"""
        doc = await self._fetch(doc_id, StagingType.TICKET)
        self._ensure_not_approved(doc)

        repo = self.records[StagingType.TICKET]
        now = utcnow()
        data = {
            **self._apply_defaults(doc),
            "ticketNumber": await repo.next_ticket_number(),
            "stagingDocId": doc.id,
            "userId": doc.user_id,
            "status": TicketStatus.OPEN.value,
            "priority": priority or doc.form_data.get("priority") or DEFAULT_TICKET_PRIORITY,
            "adminNotes": admin_notes or "",
            "createdAt": doc.created_at or now,
            "updatedAt": now,
        }

        record = await self._commit(doc, repo, data)
        logger.info(f"[APPROVAL] ticket {doc.id} -> {record['ticketNumber']} ({record['id']})")

        await log_event_safe(
            "approve_ticket", StagingType.TICKET.value, doc.id, user=principal.actor_id,
            details={"priority": record["priority"], "ticket_number": record["ticketNumber"]},
            related={"mongo_id": record["id"], "user_id": doc.user_id},
        )
        await self._notify(ticket_notification(doc, record))

        return {"mongoId": record["id"], "firestoreDocId": doc.id, "ticketNumber": record["ticketNumber"]}

    # ==================== REJECT ====================

    async def reject(self, doc_id: str, expected: StagingType, principal: Principal,
                     rejection_reason: Optional[str] = None) -> Dict[str, str]:
        doc = await self._fetch(doc_id, expected)
        self._ensure_not_approved(doc)

        reason = (rejection_reason or "").strip() or DEFAULT_REJECTION_REASON
        rejected = await self.staging.transition(
            doc.id,
            StagingStatus.REJECTED.value,
            {"rejectionReason": reason, "rejectedAt": utcnow(), "rejectedBy": principal.actor_id},
            forbid=(APPROVED,),
        )
        if not rejected:
            raise AlreadyApproved(f"{expected.value.capitalize()} already approved")

        logger.info(f"[APPROVAL] {expected.value} {doc.id} rejected by {principal.actor_id}: {reason}")
        await log_event_safe(
            f"reject_{expected.value}", expected.value, doc.id, user=principal.actor_id,
            details={"reason": reason},
        )
        await self._notify(rejection_notification(doc, reason))

        return {"firestoreDocId": doc.id}

    # ==================== STATUS ====================

    async def update_status(self, doc_id: str, new_status: str, principal: Principal) -> Dict[str, str]:
        """Staging-only transition: no record, no notification"""
        if new_status not in VALID_STAGING_STATUSES:
            raise InvalidStatus(
                f"Invalid status. Must be one of: {', '.join(VALID_STAGING_STATUSES)}",
                {"status": new_status},
            )
        if new_status == APPROVED:
            raise InvalidStatus("Use the approve endpoints to approve a submission", {"status": new_status})

        doc = await self.staging.get(doc_id)
        moved = await self.staging.transition(doc.id, new_status, forbid=(APPROVED,))
        if not moved:
            raise AlreadyApproved("Approved submissions cannot change status", {"mongoId": doc.mongo_id})

        logger.info(f"[APPROVAL] {doc.type.value} {doc.id}: {doc.status} -> {new_status}")
        await log_event_safe(
            "update_status", doc.type.value, doc.id, user=principal.actor_id,
            details={"old_status": doc.status, "new_status": new_status},
        )
        return {"firestoreDocId": doc.id, "status": new_status}

    # ==================== LISTING ====================

    async def list_pending(self, type: Optional[StagingType] = None) -> Dict[str, Any]:
        if type:
            docs = await self.staging.list_pending(type)
            return {"data": [d.to_api() for d in docs], "count": len(docs)}

        docs = await self.staging.list_pending()
        grouped = {TYPE_BUCKETS[t]: [] for t in (StagingType.LOAN, StagingType.INSURANCE, StagingType.TICKET)}
        for doc in docs:
            bucket = TYPE_BUCKETS[doc.type]
            if bucket in grouped:
                grouped[bucket].append(doc.to_api())
        return {"stats": pending_stats(docs), "data": grouped}
