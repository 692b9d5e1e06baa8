"""
BrokerDesk - Notification Gateway

Best-effort fan-out of status changes:
- PushChannel: Firebase Cloud Messaging, to a topic (user_<uid>, admin_notifications)
  or a single device token
- EmailChannel: SendGrid, when the notification carries a recipient address

publish() makes one attempt per channel and never raises. The state change
that triggered the notification is already committed by then.
Delivered topic notifications are kept in `notifications` so a customer can
read what a missed push said.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from starlette.concurrency import run_in_threadpool

from config import db, now_iso
from email_service import email_service
from firebase_app import is_firebase_ready
from models.staging import StagingDocument, StagingType
from services.errors import NotFound, NotificationFailed

logger = logging.getLogger("notification_gateway")

ADMIN_TOPIC = "admin_notifications"
CLICK_ACTION = "FLUTTER_NOTIFICATION_CLICK"

RECORD_ID_KEYS = {
    StagingType.LOAN: "loanId",
    StagingType.INSURANCE: "insuranceId",
    StagingType.TICKET: "ticketId",
}


def user_topic(external_user_ref: str) -> str:
    return f"user_{external_user_ref}"


@dataclass
class Notification:
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)
    topic: Optional[str] = None
    device_token: Optional[str] = None
    email: Optional[str] = None
    subject: Optional[str] = None
    html: Optional[str] = None

    @property
    def target(self) -> str:
        return self.topic or self.device_token or self.email or "-"


# ==================== CHANNELS ====================

class NotificationChannel:
    name = "channel"

    def accepts(self, notification: Notification) -> bool:
        raise NotImplementedError

    async def send(self, notification: Notification) -> Optional[str]:
        """Deliver once or raise NotificationFailed; may return a provider message id"""
        raise NotImplementedError


class PushChannel(NotificationChannel):
    name = "push"

    def accepts(self, notification: Notification) -> bool:
        return bool(notification.topic or notification.device_token)

    @staticmethod
    def _payload(notification: Notification) -> Dict[str, str]:
        # FCM data values must be strings
        data = {k: "" if v is None else str(v) for k, v in notification.data.items()}
        data.setdefault("clickAction", CLICK_ACTION)
        return data

    async def send(self, notification: Notification) -> Optional[str]:
        if not is_firebase_ready():
            raise NotificationFailed("Firebase is not initialised")

        from firebase_admin import messaging

        message = messaging.Message(
            notification=messaging.Notification(title=notification.title, body=notification.body),
            data=self._payload(notification),
            topic=notification.topic if not notification.device_token else None,
            token=notification.device_token,
        )
        try:
            message_id = await run_in_threadpool(messaging.send, message)
        except Exception as e:
            raise NotificationFailed(f"FCM send to {notification.target} failed: {e}")
        logger.info(f"[NOTIFY] push -> {notification.target}: {message_id}")
        return message_id

    async def subscribe(self, tokens: List[str], topic: str) -> int:
        """Returns the number of tokens subscribed"""
        if not is_firebase_ready():
            raise NotificationFailed("Firebase is not initialised")
        from firebase_admin import messaging

        try:
            response = await run_in_threadpool(messaging.subscribe_to_topic, tokens, topic)
        except Exception as e:
            raise NotificationFailed(f"Subscribe to {topic} failed: {e}")
        logger.info(f"[NOTIFY] subscribed {response.success_count}/{len(tokens)} tokens to {topic}")
        return response.success_count

    async def unsubscribe(self, tokens: List[str], topic: str) -> int:
        if not is_firebase_ready():
            raise NotificationFailed("Firebase is not initialised")
        from firebase_admin import messaging

        try:
            response = await run_in_threadpool(messaging.unsubscribe_from_topic, tokens, topic)
        except Exception as e:
            raise NotificationFailed(f"Unsubscribe from {topic} failed: {e}")
        logger.info(f"[NOTIFY] unsubscribed {response.success_count}/{len(tokens)} tokens from {topic}")
        return response.success_count


class EmailChannel(NotificationChannel):
    name = "email"

    def __init__(self, service=None):
        self.service = service or email_service

    def accepts(self, notification: Notification) -> bool:
        return bool(notification.email and notification.html)

    async def send(self, notification: Notification) -> Optional[str]:
        sent = await run_in_threadpool(
            self.service.send_status_update,
            notification.email,
            notification.subject or notification.title,
            notification.html,
        )
        if not sent:
            raise NotificationFailed(f"Email to {notification.email} was not sent")
        return None


# ==================== HISTORY ====================

class NotificationHistory:
    """Delivered topic notifications, newest first per topic"""

    def __init__(self, database=None):
        self.db = database if database is not None else db
        self.collection = self.db.notifications

    async def record(self, notification: Notification, channels: List[str],
                     message_id: Optional[str] = None) -> Dict[str, Any]:
        entry = {
            "id": str(uuid.uuid4()),
            "topic": notification.topic,
            "title": notification.title,
            "body": notification.body,
            "data": dict(notification.data),
            "type": notification.data.get("type", "other"),
            "channels": channels,
            "messageId": message_id,
            "sentAt": now_iso(),
            "read": False,
            "readAt": None,
        }
        await self.collection.insert_one(entry)
        entry.pop("_id", None)
        return entry

    async def list_for_topic(self, topic: str, limit: int = 50) -> List[Dict[str, Any]]:
        return await self.collection.find(
            {"topic": topic}, {"_id": 0}
        ).sort("sentAt", -1).limit(limit).to_list(limit)

    async def mark_read(self, notification_id: str, topic: str) -> Dict[str, Any]:
        """Only notifications of the given topic can be marked"""
        await self.collection.update_one(
            {"id": notification_id, "topic": topic, "read": False},
            {"$set": {"read": True, "readAt": now_iso()}},
        )
        entry = await self.collection.find_one({"id": notification_id, "topic": topic}, {"_id": 0})
        if not entry:
            raise NotFound("Notification not found")
        return entry


# ==================== GATEWAY ====================

class NotificationGateway:

    def __init__(self, channels: List[NotificationChannel], history: Optional[NotificationHistory] = None):
        self.channels = channels
        self.history = history

    async def publish(self, notification: Notification) -> bool:
        """Try every accepting channel once; True if at least one delivered"""
        delivered = []
        message_id = None
        ref = notification.data.get("firestoreDocId", "-")
        for channel in self.channels:
            if not channel.accepts(notification):
                continue
            try:
                result = await channel.send(notification)
                delivered.append(channel.name)
                message_id = message_id or result
            except NotificationFailed as e:
                logger.warning(f"[NOTIFY] {channel.name} failed for {ref} ({notification.target}): {e.message}")
            except Exception as e:
                logger.warning(f"[NOTIFY] {channel.name} error for {ref} ({notification.target}): {e}")

        if delivered and notification.topic and self.history is not None:
            try:
                await self.history.record(notification, delivered, message_id)
            except Exception as e:
                logger.warning(f"[NOTIFY] history not recorded for {ref} ({notification.topic}): {e}")
        return bool(delivered)


_push = PushChannel()
_history: Optional[NotificationHistory] = None
_gateway: Optional[NotificationGateway] = None


def get_push_channel() -> PushChannel:
    return _push


def get_notification_history() -> NotificationHistory:
    global _history
    if _history is None:
        _history = NotificationHistory()
    return _history


def get_notification_gateway() -> NotificationGateway:
    global _gateway
    if _gateway is None:
        _gateway = NotificationGateway([_push, EmailChannel()], history=get_notification_history())
    return _gateway


# ==================== MESSAGES ====================

def _contact(doc: StagingDocument):
    form = doc.form_data
    return form.get("email"), form.get("fullName") or form.get("name", "")


def approval_notification(doc: StagingDocument, record: Dict[str, Any]) -> Notification:
    form = doc.form_data
    email, name = _contact(doc)
    if doc.type == StagingType.LOAN:
        title = "✅ Loan Approved"
        body = f"Your loan application for ₹{form.get('loanAmount')} has been approved!"
        kind = "loan"
    else:
        title = "✅ Insurance Application Approved"
        body = f"Your {form.get('insuranceType', 'insurance')} application has been approved!"
        kind = "insurance"

    return Notification(
        title=title,
        body=body,
        data={
            "type": f"{kind}_approved",
            RECORD_ID_KEYS[doc.type]: record["id"],
            "firestoreDocId": doc.id,
        },
        topic=user_topic(doc.user_id) if doc.user_id else None,
        email=email,
        subject=title,
        html=email_service.status_update_html(name, kind, "approved", record["id"], admin_notes=record.get("adminNotes", "")),
    )


def rejection_notification(doc: StagingDocument, reason: str) -> Notification:
    email, name = _contact(doc)
    kind = doc.type.value
    title = f"❌ {kind.capitalize()} Application Update"
    return Notification(
        title=title,
        body=reason or f"Your {kind} application was not approved",
        data={
            "type": f"{kind}_rejected",
            "firestoreDocId": doc.id,
            "reason": reason,
        },
        topic=user_topic(doc.user_id) if doc.user_id else None,
        email=email,
        subject=title,
        html=email_service.status_update_html(name, kind, "rejected", doc.id, reason=reason),
    )


def ticket_notification(doc: StagingDocument, record: Dict[str, Any]) -> Notification:
    email, name = _contact(doc)
    title = "🎫 Support Ticket Created"
    return Notification(
        title=title,
        body=f'Your ticket "{record.get("subject")}" has been created',
        data={
            "type": "ticket_created",
            "ticketId": record["id"],
            "ticketNumber": record.get("ticketNumber"),
            "firestoreDocId": doc.id,
        },
        topic=user_topic(doc.user_id) if doc.user_id else None,
        email=email,
        subject=f"{title} ({record.get('ticketNumber')})",
        html=email_service.status_update_html(name, "ticket", "opened", record.get("ticketNumber", record["id"])),
    )


def new_submission_notification(doc_id: str, type: StagingType, form_data: Dict[str, Any]) -> Notification:
    label = type.value.capitalize()
    who = form_data.get("fullName") or form_data.get("subject") or "A customer"
    return Notification(
        title=f"📥 New {label} Submission",
        body=f"{who} is waiting for review",
        data={"type": f"{type.value}_submitted", "firestoreDocId": doc_id},
        topic=ADMIN_TOPIC,
    )
