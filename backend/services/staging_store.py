"""
BrokerDesk - Staging Store (data_tmp)

Temporary holding area for unreviewed submissions, before they are
migrated into the system of record.

Two backends share one async interface:
- FirestoreStagingStore: the production store, shared with the mobile apps
- MongoStagingStore: same collection name in MongoDB (STAGING_BACKEND=mongo)

transition() is the only way the approval workflow changes a status:
it refuses to touch a document whose current status is in `forbid`,
atomically, so two concurrent approvals cannot both win.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from config import db, utcnow, STAGING_BACKEND, STAGING_COLLECTION
from models.staging import (
    StagingDocument,
    StagingStatus,
    StagingType,
)
from services.errors import NotFound

logger = logging.getLogger("staging_store")


class StagingStore:
    """Interface implemented by every staging backend"""

    async def add(self, type: StagingType, user_id: Optional[str], form_data: Dict[str, Any],
                  status: str = StagingStatus.PENDING.value) -> str:
        raise NotImplementedError

    async def get(self, doc_id: str) -> StagingDocument:
        raise NotImplementedError

    async def list_pending(self, type: Optional[StagingType] = None) -> List[StagingDocument]:
        raise NotImplementedError

    async def list_for_user(self, user_id: str) -> List[StagingDocument]:
        raise NotImplementedError

    async def transition(self, doc_id: str, status: str, extra: Optional[Dict[str, Any]] = None,
                         forbid: Iterable[str] = ()) -> bool:
        raise NotImplementedError

    async def delete(self, doc_id: str) -> None:
        raise NotImplementedError

    async def update_status(self, doc_id: str, status: str, extra: Optional[Dict[str, Any]] = None) -> None:
        """Unconditional status write"""
        await self.transition(doc_id, status, extra)


# ════════════════════════════════════════════════════════════════════════════
# MONGODB
# ════════════════════════════════════════════════════════════════════════════

def _to_storable(values: Dict[str, Any]) -> Dict[str, Any]:
    """Datetimes are stored as ISO strings, like every other collection"""
    return {k: v.isoformat() if isinstance(v, datetime) else v for k, v in values.items()}


class MongoStagingStore(StagingStore):

    def __init__(self, database=None):
        self.db = database if database is not None else db
        self.collection = self.db[STAGING_COLLECTION]

    async def add(self, type, user_id, form_data, status=StagingStatus.PENDING.value) -> str:
        now = utcnow().isoformat()
        doc = {
            "id": str(uuid.uuid4()),
            "type": StagingType(type).value,
            "userId": user_id,
            "formData": form_data,
            "status": status,
            "createdAt": now,
            "updatedAt": now,
        }
        await self.collection.insert_one(doc)
        logger.info(f"[STAGING] Added {doc['type']} {doc['id']} for user {user_id}")
        return doc["id"]

    async def get(self, doc_id: str) -> StagingDocument:
        doc = await self.collection.find_one({"id": doc_id}, {"_id": 0})
        if not doc:
            raise NotFound(f"Document {doc_id} not found")
        return StagingDocument.model_validate(doc)

    async def list_pending(self, type=None) -> List[StagingDocument]:
        query: Dict[str, Any] = {"status": StagingStatus.PENDING.value}
        if type:
            query["type"] = StagingType(type).value
        docs = await self.collection.find(query, {"_id": 0}).sort("createdAt", -1).to_list(None)
        return [StagingDocument.model_validate(d) for d in docs]

    async def list_for_user(self, user_id: str) -> List[StagingDocument]:
        docs = await self.collection.find({"userId": user_id}, {"_id": 0}).sort("createdAt", -1).to_list(None)
        return [StagingDocument.model_validate(d) for d in docs]

    async def transition(self, doc_id, status, extra=None, forbid=()) -> bool:
        update = _to_storable({**(extra or {}), "status": status, "updatedAt": utcnow()})
        updated = await self.collection.find_one_and_update(
            {"id": doc_id, "status": {"$nin": list(forbid)}},
            {"$set": update},
        )
        if updated is not None:
            logger.info(f"[STAGING] {doc_id} -> {status}")
            return True

        if not await self.collection.find_one({"id": doc_id}, {"_id": 0, "id": 1}):
            raise NotFound(f"Document {doc_id} not found")
        logger.warning(f"[STAGING] {doc_id} -> {status} refused (current status in {list(forbid)})")
        return False

    async def delete(self, doc_id: str) -> None:
        await self.collection.delete_one({"id": doc_id})
        logger.info(f"[STAGING] Deleted {doc_id}")


# ════════════════════════════════════════════════════════════════════════════
# FIRESTORE
# ════════════════════════════════════════════════════════════════════════════

class FirestoreStagingStore(StagingStore):

    def __init__(self, client=None):
        from firebase_admin import firestore_async
        from firebase_app import require_firebase

        self.client = client if client is not None else firestore_async.client(require_firebase())
        self.collection = self.client.collection(STAGING_COLLECTION)

    @staticmethod
    def _from_snapshot(snapshot) -> StagingDocument:
        return StagingDocument.model_validate({"id": snapshot.id, **(snapshot.to_dict() or {})})

    async def _collect(self, query) -> List[StagingDocument]:
        return [self._from_snapshot(s) async for s in query.stream()]

    async def add(self, type, user_id, form_data, status=StagingStatus.PENDING.value) -> str:
        from google.cloud import firestore

        _, ref = await self.collection.add({
            "type": StagingType(type).value,
            "userId": user_id,
            "formData": form_data,
            "status": status,
            "createdAt": firestore.SERVER_TIMESTAMP,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        })
        logger.info(f"[STAGING] Added {StagingType(type).value} {ref.id} for user {user_id}")
        return ref.id

    async def get(self, doc_id: str) -> StagingDocument:
        snapshot = await self.collection.document(doc_id).get()
        if not snapshot.exists:
            raise NotFound(f"Document {doc_id} not found")
        return self._from_snapshot(snapshot)

    async def list_pending(self, type=None) -> List[StagingDocument]:
        from google.cloud import firestore
        from google.cloud.firestore_v1.base_query import FieldFilter

        query = self.collection.where(filter=FieldFilter("status", "==", StagingStatus.PENDING.value))
        if type:
            query = query.where(filter=FieldFilter("type", "==", StagingType(type).value))
        return await self._collect(query.order_by("createdAt", direction=firestore.Query.DESCENDING))

    async def list_for_user(self, user_id: str) -> List[StagingDocument]:
        from google.cloud import firestore
        from google.cloud.firestore_v1.base_query import FieldFilter

        query = self.collection.where(filter=FieldFilter("userId", "==", user_id))
        return await self._collect(query.order_by("createdAt", direction=firestore.Query.DESCENDING))

    async def transition(self, doc_id, status, extra=None, forbid=()) -> bool:
        from google.cloud import firestore

        ref = self.collection.document(doc_id)
        forbidden = set(forbid)
        update = {**(extra or {}), "status": status, "updatedAt": firestore.SERVER_TIMESTAMP}

        @firestore.async_transactional
        async def _apply(transaction) -> bool:
            snapshot = await ref.get(transaction=transaction)
            if not snapshot.exists:
                raise NotFound(f"Document {doc_id} not found")
            if (snapshot.to_dict() or {}).get("status") in forbidden:
                return False
            transaction.update(ref, update)
            return True

        applied = await _apply(self.client.transaction())
        if applied:
            logger.info(f"[STAGING] {doc_id} -> {status}")
        else:
            logger.warning(f"[STAGING] {doc_id} -> {status} refused (current status in {sorted(forbidden)})")
        return applied

    async def delete(self, doc_id: str) -> None:
        await self.collection.document(doc_id).delete()
        logger.info(f"[STAGING] Deleted {doc_id}")


# ════════════════════════════════════════════════════════════════════════════
# FACTORY
# ════════════════════════════════════════════════════════════════════════════

_store: Optional[StagingStore] = None


def get_staging_store() -> StagingStore:
    """FastAPI dependency / shared accessor for the configured backend"""
    global _store
    if _store is None:
        if STAGING_BACKEND == "mongo":
            _store = MongoStagingStore()
        else:
            _store = FirestoreStagingStore()
        logger.info(f"[STAGING] Using {type(_store).__name__}")
    return _store
