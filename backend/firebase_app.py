"""
BrokerDesk - Firebase Admin bootstrap

Firestore (staging store), Cloud Messaging (push) and ID token
verification all go through the single app initialised here.
"""

import json
import logging
from typing import Optional

import firebase_admin
from firebase_admin import credentials

from config import FIREBASE_SERVICE_ACCOUNT

logger = logging.getLogger("firebase")

_app: Optional[firebase_admin.App] = None
_init_error: Optional[str] = None


def init_firebase() -> Optional[firebase_admin.App]:
    """Initialise the default Firebase app once. Returns None when not configured."""
    global _app, _init_error

    if _app is not None:
        return _app

    if not FIREBASE_SERVICE_ACCOUNT:
        _init_error = "FIREBASE_SERVICE_ACCOUNT not set"
        logger.warning("[FIREBASE] FIREBASE_SERVICE_ACCOUNT not set - push, Firestore and ID tokens disabled")
        return None

    try:
        service_account = json.loads(FIREBASE_SERVICE_ACCOUNT)
        # Keys pasted into .env usually carry escaped newlines
        if service_account.get("private_key"):
            service_account["private_key"] = service_account["private_key"].replace("\\n", "\n")

        cred = credentials.Certificate(service_account)
        _app = firebase_admin.initialize_app(cred, {"projectId": service_account.get("project_id")})
        _init_error = None
        logger.info(f"[FIREBASE] Admin SDK initialised for project {service_account.get('project_id')}")
    except (ValueError, json.JSONDecodeError) as e:
        _init_error = str(e)
        logger.error(f"[FIREBASE] Initialisation failed: {e}")
        return None

    return _app


def is_firebase_ready() -> bool:
    return _app is not None


def require_firebase() -> firebase_admin.App:
    app = init_firebase()
    if app is None:
        raise RuntimeError(f"Firebase Admin SDK not initialised: {_init_error}")
    return app
