"""
BrokerDesk - Identity Resolver

Finds the user a new system-of-record entry is attributed to.
Ordered fallback, first match wins:
  1. the submitter (staging userId -> users.firebase_uid)   createdBy=user
  2. the acting admin, when it has a users.id              createdBy=admin
  3. any admin account                                      createdBy=admin
  4. NoCreatorResolvable; a record is never stored without a creator
"""

import logging
from dataclasses import dataclass
from typing import Optional

from models.auth import Principal
from models.records import CreatorKind
from models.staging import StagingDocument
from services.errors import NoCreatorResolvable
from services.repositories import UserRepository

logger = logging.getLogger("identity_resolver")


@dataclass(frozen=True)
class ResolvedCreator:
    kind: CreatorKind
    creator_id: str
    # users.id of the submitter when step 1 matched, otherwise None
    owner_id: Optional[str] = None


class IdentityResolver:

    def __init__(self, users: UserRepository):
        self.users = users

    async def resolve(self, doc: StagingDocument, principal: Principal) -> ResolvedCreator:
        submitter = await self.users.find_by_firebase_uid(doc.user_id) if doc.user_id else None
        if submitter:
            logger.info(f"[IDENTITY] {doc.id}: submitter {doc.user_id} -> user {submitter['id']}")
            return ResolvedCreator(CreatorKind.USER, submitter["id"], submitter["id"])

        if principal.system_user_id:
            logger.info(f"[IDENTITY] {doc.id}: no user for {doc.user_id}, using acting admin {principal.system_user_id}")
            return ResolvedCreator(CreatorKind.ADMIN, principal.system_user_id)

        admin = await self.users.find_any_admin()
        if admin:
            logger.warning(f"[IDENTITY] {doc.id}: falling back to admin account {admin['id']}")
            return ResolvedCreator(CreatorKind.ADMIN, admin["id"])

        logger.error(f"[IDENTITY] {doc.id}: no user for {doc.user_id} and no admin account exists")
        raise NoCreatorResolvable(
            "Cannot determine record creator: no matching user and no admin account",
            {"userId": doc.user_id, "actor": principal.actor_id},
        )
