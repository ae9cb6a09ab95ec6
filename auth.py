"""Authentication module for Firebase integration."""

import os
from typing import Optional

import firebase_admin
from fastapi import HTTPException, Header
from firebase_admin import credentials, auth, firestore
from pydantic import BaseModel

from config import get_logger, FIRESTORE_DATABASE_ID, DEFAULT_USER_NAME

logger = get_logger(__name__)

# Firebase app and database globals
firebase_app = None
db = None

def initialize_firebase():
    """Initialize Firebase Admin SDK and Firestore."""
    global firebase_app, db

    try:
        # Check if Firebase Admin is already initialized
        if not firebase_admin._apps:
            # Service account when provided, Application Default Credentials otherwise
            cred = credentials.Certificate(os.getenv("GOOGLE_APPLICATION_CREDENTIALS")) if "GOOGLE_APPLICATION_CREDENTIALS" in os.environ else None
            firebase_app = firebase_admin.initialize_app(cred)
            logger.info("Firebase Admin SDK initialized successfully")
        else:
            firebase_app = firebase_admin.get_app()
            logger.info("Firebase Admin SDK already initialized")
    except Exception as e:
        logger.error(f"Failed to initialize Firebase Admin SDK: {e}")
        logger.warning("Authentication features will be disabled")

    # Initialize Firestore
    try:
        if firebase_app:
            if FIRESTORE_DATABASE_ID:
                logger.info(f"Using Firestore database ID: {FIRESTORE_DATABASE_ID}")
                db = firestore.client(database_id=FIRESTORE_DATABASE_ID)
            else:
                logger.warning("FIRESTORE_DATABASE_ID not set, using default database")
                db = firestore.client()
        else:
            logger.warning("Firestore disabled - Firebase Admin SDK not initialized")
    except Exception as e:
        logger.error(f"Failed to initialize Firestore: {e}")
        logger.warning("Daily content sync will be disabled")

async def verify_firebase_token(authorization: str = Header(None)):
    """Verify Firebase ID token and return user info"""
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header missing")

    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    token = authorization.split(" ")[1]

    try:
        # Verify the Firebase ID token
        decoded_token = auth.verify_id_token(token)
        user_id = decoded_token.get('uid')

        if not user_id:
            raise HTTPException(status_code=401, detail="Invalid token - no user ID")

        logger.debug(f"Token verified for user: {user_id}")
        return {
            "uid": user_id,
            "email": decoded_token.get('email'),
            "name": decoded_token.get('name'),
            "token": token,
            "decoded_token": decoded_token
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Token verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token")

def get_firestore_client():
    """Get the Firestore client instance."""
    return db

def get_firebase_app():
    """Get the Firebase app instance."""
    return firebase_app

def validate_database_availability() -> None:
    """Validate that database is available.

    Raises:
        HTTPException: If database is not available
    """
    client = get_firestore_client()
    if not client:
        raise HTTPException(
            status_code=503,
            detail="Firestore service unavailable"
        )


class Identity(BaseModel):
    """The acting user of a session."""
    user_id: str
    display_name: str = DEFAULT_USER_NAME
    is_anonymous: bool = False
    id_token: Optional[str] = None


def identity_from_user_info(user_info: dict, display_name: Optional[str] = None) -> Identity:
    """Build an Identity from the verify_firebase_token result."""
    decoded_token = user_info.get('decoded_token') or {}
    firebase_info = decoded_token.get('firebase') if isinstance(decoded_token, dict) else None
    sign_in_provider = firebase_info.get('sign_in_provider') if isinstance(firebase_info, dict) else None
    return Identity(
        user_id=user_info['uid'],
        display_name=display_name or user_info.get('name') or DEFAULT_USER_NAME,
        is_anonymous=sign_in_provider == 'anonymous',
        id_token=user_info.get('token'),
    )


class StaticIdentityProvider:
    """Provides an identity resolved once, e.g. from a verified token."""

    def __init__(self, identity: Optional[Identity]):
        self.identity = identity

    def current_identity(self) -> Optional[Identity]:
        return self.identity


class GuestIdentityProvider:
    """Provides a local guest identity when no account is signed in.

    The HTTP service always has a verified token, so it wires
    ``StaticIdentityProvider``. This provider and ``FallbackIdentityProvider``
    are for hosts that embed ``CoupleSession`` directly, such as a device
    companion that may run signed out.
    """

    def __init__(self, user_id: Optional[str], display_name: str = DEFAULT_USER_NAME):
        self.user_id = user_id
        self.display_name = display_name

    def current_identity(self) -> Optional[Identity]:
        if not self.user_id:
            return None
        return Identity(user_id=self.user_id, display_name=self.display_name, is_anonymous=True)


class FallbackIdentityProvider:
    """Uses the primary provider's identity, the fallback's when there is none."""

    def __init__(self, primary, fallback):
        self.primary = primary
        self.fallback = fallback

    def current_identity(self) -> Optional[Identity]:
        identity = self.primary.current_identity()
        if identity is None:
            logger.debug("No authenticated identity, using guest identity")
            identity = self.fallback.current_identity()
        return identity
