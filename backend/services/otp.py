"""
BrokerDesk - Email one-time codes

Codes live in otp_codes for OTP_TTL_MINUTES, hashed. Issuing a new code
replaces the previous one for that address; a verified code is consumed.
The scheduler sweeps expired codes every OTP_SWEEP_MINUTES.
"""

import logging
import secrets
from datetime import timedelta
from typing import Optional

from starlette.concurrency import run_in_threadpool

from config import db, hash_password, now_iso, utcnow, OTP_TTL_MINUTES
from email_service import email_service

logger = logging.getLogger("otp")

MAX_ATTEMPTS = 5


def generate_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


async def issue_otp(email: str, name: str = "", send: bool = True) -> str:
    """Store a fresh code for email and send it; returns the code"""
    code = generate_code()
    expires_at = (utcnow() + timedelta(minutes=OTP_TTL_MINUTES)).isoformat()

    await db.otp_codes.update_one(
        {"email": email},
        {"$set": {
            "email": email,
            "code_hash": hash_password(code),
            "name": name or "",
            "attempts": 0,
            "created_at": now_iso(),
            "expires_at": expires_at,
        }},
        upsert=True,
    )

    if send:
        sent = await run_in_threadpool(email_service.send_otp, email, code, name)
        if not sent:
            logger.warning(f"[OTP] Code for {email} stored but email not sent")
    logger.info(f"[OTP] Issued code for {email} (expires {expires_at})")
    return code


async def verify_otp(email: str, code: str) -> Optional[dict]:
    """
    Check a code. Returns the stored entry (without hash) on success and
    consumes it; None when missing, expired, wrong or out of attempts.
    """
    entry = await db.otp_codes.find_one({"email": email}, {"_id": 0})
    if not entry:
        return None

    if entry["expires_at"] <= now_iso():
        await db.otp_codes.delete_one({"email": email})
        logger.info(f"[OTP] Expired code for {email}")
        return None

    if entry.get("attempts", 0) >= MAX_ATTEMPTS:
        logger.warning(f"[OTP] Too many attempts for {email}")
        return None

    if entry["code_hash"] != hash_password(code.strip()):
        await db.otp_codes.update_one({"email": email}, {"$inc": {"attempts": 1}})
        return None

    await db.otp_codes.delete_one({"email": email})
    entry.pop("code_hash", None)
    logger.info(f"[OTP] Verified {email}")
    return entry


async def purge_expired_otps() -> int:
    result = await db.otp_codes.delete_many({"expires_at": {"$lte": now_iso()}})
    if result.deleted_count:
        logger.info(f"[OTP] Purged {result.deleted_count} expired codes")
    return result.deleted_count
