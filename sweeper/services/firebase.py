"""
Campus Retention Sweeper — Firebase Admin SDK bridge.

Initialises the Admin SDK from a service account key and hands out the
async Firestore client the sweeper runs against.
"""

import logging

import firebase_admin
from firebase_admin import credentials, firestore_async

logger = logging.getLogger(__name__)

_app = None


def init_firebase(cred_path: str = "", project_id: str = "") -> bool:
    """
    Initialize Firebase Admin SDK.

    Args:
        cred_path: Path to the service account JSON key file.
        project_id: Optional project id override.

    Returns True if init succeeded, False otherwise.
    """
    global _app

    if _app is not None:
        return True

    if not cred_path:
        logger.warning("FIREBASE_CRED_PATH not set — retention sweeper disabled")
        return False

    try:
        cred = credentials.Certificate(cred_path)
        options = {"projectId": project_id} if project_id else None
        _app = firebase_admin.initialize_app(cred, options)
        logger.info("✅ Firebase Admin SDK initialized")
        return True
    except Exception as e:
        logger.error(f"Firebase init failed: {e}")
        return False


def is_initialized() -> bool:
    """Check if Firebase Admin SDK is initialized."""
    return _app is not None


def get_firestore_client():
    """Async Firestore client for the initialised app."""
    if _app is None:
        raise RuntimeError("Firebase Admin SDK is not initialized")
    return firestore_async.client(_app)
