"""
BrokerDesk - System-of-record repositories

One repository per collection (loans, insurances, tickets) plus a read-only
view of users. Records are validated with their pydantic model before any
write; a rejected model raises ValidationFailed and nothing is stored.
"""

import logging
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError
from pymongo.errors import DuplicateKeyError

from config import db
from models.records import (
    InsuranceRecord,
    LoanRecord,
    PREVIEW_FIELDS,
    TicketRecord,
)
from models.staging import StagingType
from services.errors import AlreadyApproved, ValidationFailed

logger = logging.getLogger("repositories")


def validation_errors(exc: ValidationError) -> List[Dict[str, str]]:
    """pydantic errors as [{field, message}]"""
    return [
        {"field": ".".join(str(p) for p in err["loc"]) or "__root__", "message": err["msg"]}
        for err in exc.errors()
    ]


class RecordRepository:
    """Validated inserts into one system-of-record collection"""

    def __init__(self, collection: str, model: Type[BaseModel], label: str, database=None):
        self.db = database if database is not None else db
        self.collection = self.db[collection]
        self.model = model
        self.label = label

    def build(self, data: Dict[str, Any]) -> BaseModel:
        try:
            return self.model.model_validate(data)
        except ValidationError as e:
            errors = validation_errors(e)
            preview = {k: data.get(k) for k in PREVIEW_FIELDS.get(self.label, [])}
            logger.error(f"[RECORDS] {self.label} validation failed: {errors} preview={preview}")
            raise ValidationFailed(f"{self.label.capitalize()} validation failed", errors, preview)

    async def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Validate then insert; returns the stored document (without _id)"""
        doc = self.build(data).to_document()
        try:
            await self.collection.insert_one(doc)
        except DuplicateKeyError:
            logger.warning(f"[RECORDS] {self.label} for staging doc {doc.get('stagingDocId')} already exists")
            raise AlreadyApproved(f"A {self.label} record already exists for this submission")
        doc.pop("_id", None)
        logger.info(f"[RECORDS] {self.label} {doc['id']} created (staging {doc.get('stagingDocId')})")
        return doc

    async def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one({"id": record_id}, {"_id": 0})

    async def find_by_staging_id(self, staging_doc_id: str) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one({"stagingDocId": staging_doc_id}, {"_id": 0})

    async def delete(self, record_id: str) -> None:
        await self.collection.delete_one({"id": record_id})
        logger.info(f"[RECORDS] {self.label} {record_id} deleted")

    async def count(self, query: Optional[Dict[str, Any]] = None) -> int:
        return await self.collection.count_documents(query or {})


class TicketRepository(RecordRepository):

    def __init__(self, database=None):
        super().__init__("tickets", TicketRecord, "ticket", database)

    async def next_ticket_number(self) -> str:
        count = await self.count() + 1
        return f"TKT-{count:06d}"


class UserRepository:
    """Read-only lookups; users are owned by the identity subsystem"""

    def __init__(self, database=None):
        self.db = database if database is not None else db

    async def find_by_firebase_uid(self, uid: str) -> Optional[Dict[str, Any]]:
        if not uid:
            return None
        return await self.db.users.find_one({"firebase_uid": uid}, {"_id": 0, "password": 0})

    async def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        """Includes the password hash, for login"""
        return await self.db.users.find_one({"email": email.lower().strip()}, {"_id": 0})

    async def find_any_admin(self) -> Optional[Dict[str, Any]]:
        return await self.db.users.find_one(
            {"role": "admin"}, {"_id": 0, "password": 0}, sort=[("created_at", 1)]
        )


def default_record_repositories(database=None) -> Dict[StagingType, RecordRepository]:
    return {
        StagingType.LOAN: RecordRepository("loans", LoanRecord, "loan", database),
        StagingType.INSURANCE: RecordRepository("insurances", InsuranceRecord, "insurance", database),
        StagingType.TICKET: TicketRepository(database),
    }


# ==================== INDEXES ====================

async def ensure_indexes(database=None):
    database = database if database is not None else db

    for name in ("loans", "insurances", "tickets"):
        await database[name].create_index("id", unique=True)
        await database[name].create_index("stagingDocId", unique=True)
        await database[name].create_index("userId")
    await database.tickets.create_index("ticketNumber")
    await database.users.create_index("firebase_uid")
    await database.users.create_index("role")
    await database.users.create_index("email")
    await database.otp_codes.create_index("email")
    await database.otp_codes.create_index("expires_at")
    await database.event_log.create_index("created_at")
    await database.event_log.create_index("entity_id")
    await database.notifications.create_index("id", unique=True)
    await database.notifications.create_index([("topic", 1), ("sentAt", -1)])
    await database.data_tmp.create_index("id", unique=True)
    await database.data_tmp.create_index([("status", 1), ("type", 1)])
