"""
BrokerDesk - Configuration and shared helpers
"""

import os
import json
import hashlib
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Load .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'brokerdesk')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

# Admin JWT (internal principals)
JWT_SECRET = os.environ.get('JWT_SECRET', 'change-me-brokerdesk-admin-jwt-secret')
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_HOURS = int(os.environ.get('JWT_EXPIRE_HOURS', '24'))

# Firebase (staging store, push, external principals)
FIREBASE_SERVICE_ACCOUNT = os.environ.get('FIREBASE_SERVICE_ACCOUNT', '')

# "firestore" or "mongo"
STAGING_BACKEND = os.environ.get('STAGING_BACKEND', 'firestore').lower()
STAGING_COLLECTION = 'data_tmp'

# Email (SendGrid)
SENDGRID_API_KEY = os.environ.get('SENDGRID_API_KEY', '')
SENDER_EMAIL = os.environ.get('SENDER_EMAIL', 'noreply@brokerdesk.in')
ADMIN_ALERT_EMAIL = os.environ.get('ADMIN_ALERT_EMAIL', '')

# One-time codes
OTP_TTL_MINUTES = int(os.environ.get('OTP_TTL_MINUTES', '5'))
OTP_SWEEP_MINUTES = int(os.environ.get('OTP_SWEEP_MINUTES', '1'))

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')


def _load_field_defaults() -> dict:
    raw = os.environ.get('APPROVAL_FIELD_DEFAULTS')
    if not raw:
        return {"consent": True}
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError("APPROVAL_FIELD_DEFAULTS must be a JSON object")
    return parsed


# Values filled into formData on approval when the submitter left them unset.
# Set APPROVAL_FIELD_DEFAULTS='{}' to reject incomplete submissions instead.
APPROVAL_FIELD_DEFAULTS = _load_field_defaults()


# ==================== HELPERS ====================

def hash_password(password: str) -> str:
    """Hash a password with SHA256"""
    return hashlib.sha256(password.encode()).hexdigest()

def now_iso() -> str:
    """Current UTC time as ISO string"""
    return datetime.now(timezone.utc).isoformat()

def utcnow() -> datetime:
    return datetime.now(timezone.utc)
