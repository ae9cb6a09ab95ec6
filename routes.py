"""API routes for the Love2Love sync service."""

import os
from typing import Dict, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException

from analytics_service import get_analytics_service
from auth import (
    Identity,
    StaticIdentityProvider,
    get_firebase_app,
    get_firestore_client,
    identity_from_user_info,
    validate_database_availability,
    verify_firebase_token,
)
from callables import get_functions_client
from config import APP_VERSION, DEFAULT_TIMEZONE, get_functions_base_url, get_logger
from errors import (
    CallableError,
    Love2LoveError,
    NoActiveContentError,
    SessionInitializationError,
    SubmissionValidationError,
)
from models import CompletionRequest, ContentKind, OpenSessionRequest, ResponseTextRequest, SessionState, SubmissionResult
from notifications import FirebaseMessagingSink
from preferences import get_preferences
from session import CoupleSession
from store import FirestoreContentStore
from subscription_service import get_subscription_service

logger = get_logger(__name__)

# Create router
router = APIRouter()


def build_session(kind: ContentKind, identity: Identity, request: OpenSessionRequest) -> CoupleSession:
    """Create a Firestore-backed session for one user and content kind."""
    validate_database_availability()
    sink = FirebaseMessagingSink(request.fcm_token) if request.fcm_token else None
    return CoupleSession(
        kind=kind,
        identity_provider=StaticIdentityProvider(identity),
        store=FirestoreContentStore(get_firestore_client(), kind),
        functions_client=get_functions_client(),
        preferences=get_preferences(),
        notification_sink=sink,
        subscription_service=get_subscription_service(),
        analytics=get_analytics_service(),
        timezone_name=request.timezone or DEFAULT_TIMEZONE,
    )


class SessionRegistry:
    """Open couple sessions keyed by (user id, content kind)."""

    def __init__(self, factory=build_session):
        self.factory = factory
        self.sessions: Dict[Tuple[str, ContentKind], CoupleSession] = {}

    def get(self, user_id: str, kind: ContentKind) -> Optional[CoupleSession]:
        return self.sessions.get((user_id, kind))

    async def open(self, identity: Identity, kind: ContentKind, request: OpenSessionRequest) -> CoupleSession:
        """Open the session, or re-key the existing one to the requested couple."""
        key = (identity.user_id, kind)
        session = self.sessions.get(key)
        timezone_name = request.timezone or DEFAULT_TIMEZONE

        if session is not None and session.timezone_name != timezone_name:
            logger.info(f"Timezone changed to {timezone_name} for {identity.user_id}, rebuilding {kind.value} session")
            self.close(identity.user_id, kind)
            session = None

        if session is None:
            session = self.factory(kind, identity, request)
            self.sessions[key] = session
        else:
            # Refreshed token or display name
            session.identity_provider.identity = identity
            if request.fcm_token:
                session.dispatcher.sink = FirebaseMessagingSink(request.fcm_token)

        await session.initialize_for_couple(request.partner_id)
        return session

    def close(self, user_id: str, kind: ContentKind) -> bool:
        session = self.sessions.pop((user_id, kind), None)
        if session is None:
            return False
        session.close()
        return True

    def close_all(self) -> None:
        for user_id, kind in list(self.sessions):
            self.close(user_id, kind)
        logger.info("All couple sessions closed")


# Global instance
_session_registry = None


def get_session_registry() -> SessionRegistry:
    """Get or create the global session registry."""
    global _session_registry
    if _session_registry is None:
        _session_registry = SessionRegistry()
    return _session_registry


def _require_session(registry: SessionRegistry, user: dict, kind: ContentKind) -> CoupleSession:
    session = registry.get(user['uid'], kind)
    if session is None:
        raise HTTPException(status_code=404, detail=f"No open {kind.value} session")
    return session


def _to_http_exception(error: Love2LoveError) -> HTTPException:
    """Map engine errors to HTTP errors."""
    if isinstance(error, NoActiveContentError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, (SubmissionValidationError, SessionInitializationError)):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, CallableError):
        return HTTPException(status_code=502, detail=error.message)
    return HTTPException(status_code=500, detail=str(error))


# Health check endpoint
@router.get("/health")
async def health_check():
    """Health check endpoint that verifies Firebase, Firestore and the callables configuration."""
    health_status = {
        "status": "healthy",
        "service": "love2love-sync",
        "version": APP_VERSION,
        "services": {
            "firebase_admin": {"status": "unknown"},
            "firestore": {"status": "unknown"},
            "callables": {"status": "unknown"}
        }
    }

    overall_healthy = True

    if get_firebase_app():
        health_status["services"]["firebase_admin"]["status"] = "healthy"
    else:
        health_status["services"]["firebase_admin"]["status"] = "unavailable"
        health_status["services"]["firebase_admin"]["error"] = "Firebase Admin SDK not initialized"
        overall_healthy = False

    # Check Firestore connectivity
    try:
        db = get_firestore_client()
        if db:
            list(db.collection('health_check').limit(1).stream())
            health_status["services"]["firestore"]["status"] = "healthy"
        else:
            health_status["services"]["firestore"]["status"] = "unavailable"
            health_status["services"]["firestore"]["error"] = "Firestore client not initialized"
            overall_healthy = False
    except Exception as e:
        health_status["services"]["firestore"]["status"] = "error"
        health_status["services"]["firestore"]["error"] = str(e)
        overall_healthy = False

    # Callables are only configured, never invoked here
    if os.getenv('FUNCTIONS_BASE_URL') or os.getenv('FIREBASE_PROJECT_ID'):
        health_status["services"]["callables"]["status"] = "healthy"
        health_status["services"]["callables"]["base_url"] = get_functions_base_url()
    else:
        health_status["services"]["callables"]["status"] = "unavailable"
        health_status["services"]["callables"]["error"] = "Neither FUNCTIONS_BASE_URL nor FIREBASE_PROJECT_ID is set"
        overall_healthy = False

    if not overall_healthy:
        health_status["status"] = "unhealthy"
        raise HTTPException(status_code=503, detail=health_status)

    return health_status


@router.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Love2Love Sync API is running"}


@router.post("/api/daily/{kind}/session", response_model=SessionState)
async def open_session(
    kind: ContentKind,
    request: OpenSessionRequest,
    wait: bool = False,
    user: dict = Depends(verify_firebase_token),
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Open (or re-key) the caller's session for a content kind.

    With ``wait=true`` the call returns only after the first generation step.
    """
    logger.debug(f"Opening {kind.value} session for user: {user['uid']}")
    identity = identity_from_user_info(user, request.user_name)
    try:
        session = await registry.open(identity, kind, request)
        if wait:
            await session.settle()
    except Love2LoveError as e:
        logger.error(f"Failed to open {kind.value} session: {e}")
        raise _to_http_exception(e)
    return session.state()


@router.get("/api/daily/{kind}/state", response_model=SessionState)
async def get_state(
    kind: ContentKind,
    user: dict = Depends(verify_firebase_token),
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Current routing state, content and transcript."""
    return _require_session(registry, user, kind).state()


@router.post("/api/daily/{kind}/intro-seen", response_model=SessionState)
async def mark_intro_seen(
    kind: ContentKind,
    user: dict = Depends(verify_firebase_token),
    registry: SessionRegistry = Depends(get_session_registry)
):
    session = _require_session(registry, user, kind)
    session.mark_intro_seen()
    return session.state()


@router.post("/api/daily/{kind}/regenerate", response_model=SessionState)
async def regenerate(
    kind: ContentKind,
    user: dict = Depends(verify_firebase_token),
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Explicit user retry after an error."""
    session = _require_session(registry, user, kind)
    await session.regenerate()
    return session.state()


@router.post("/api/daily/{kind}/responses", response_model=SubmissionResult)
async def submit_response(
    kind: ContentKind,
    request: ResponseTextRequest,
    user: dict = Depends(verify_firebase_token),
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Submit a chat response to today's content."""
    session = _require_session(registry, user, kind)
    try:
        return await session.submit_response(request.text)
    except Love2LoveError as e:
        logger.warning(f"Response rejected for user {user['uid']}: {e}")
        raise _to_http_exception(e)


@router.post("/api/daily/{kind}/completion")
async def set_completion(
    kind: ContentKind,
    request: CompletionRequest,
    user: dict = Depends(verify_firebase_token),
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Mark today's content as completed or not."""
    session = _require_session(registry, user, kind)
    try:
        await session.set_completion(request.content_id, request.completed)
    except Love2LoveError as e:
        raise _to_http_exception(e)
    except Exception as e:
        logger.error(f"Error updating completion of {request.content_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update completion")
    return {"status": "updated", "contentId": request.content_id, "completed": request.completed}


@router.delete("/api/daily/{kind}/session")
async def close_session(
    kind: ContentKind,
    user: dict = Depends(verify_firebase_token),
    registry: SessionRegistry = Depends(get_session_registry)
):
    if not registry.close(user['uid'], kind):
        raise HTTPException(status_code=404, detail=f"No open {kind.value} session")
    return {"status": "closed"}
