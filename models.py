"""Pydantic models for the Love2Love daily content engine."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ContentKind(str, Enum):
    """The two daily content streams a couple shares."""
    QUESTION = "question"
    CHALLENGE = "challenge"

    @property
    def content_collection(self) -> str:
        return "dailyQuestions" if self is ContentKind.QUESTION else "dailyChallenges"

    @property
    def settings_collection(self) -> str:
        return "dailyQuestionSettings" if self is ContentKind.QUESTION else "dailyChallengeSettings"

    @property
    def key_field(self) -> str:
        return "questionKey" if self is ContentKind.QUESTION else "challengeKey"

    @property
    def day_field(self) -> str:
        return "questionDay" if self is ContentKind.QUESTION else "challengeDay"

    @property
    def generate_function(self) -> str:
        return "generateDailyQuestion" if self is ContentKind.QUESTION else "generateDailyChallenge"

    @property
    def supports_responses(self) -> bool:
        return self is ContentKind.QUESTION

    def intro_seen_key(self, user_id: str) -> str:
        """Local preference key for the "has seen intro" flag."""
        prefix = "intro_seen_" if self is ContentKind.QUESTION else "challenge_intro_seen_"
        return f"{prefix}{user_id}"


SUBMIT_RESPONSE_FUNCTION = "submitDailyQuestionResponse"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CoupleSettings(BaseModel):
    """Per-couple day counting settings stored in Firestore."""
    couple_id: str
    start_date: datetime
    timezone: str = "Europe/Paris"
    current_day: int = 1
    is_active: bool = True
    last_visit_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_firestore(cls, couple_id: str, data: Dict[str, Any]) -> "CoupleSettings":
        """Build settings from a raw settings document."""
        return cls(
            couple_id=couple_id,
            start_date=_as_utc(data.get("startDate")) or datetime.now(timezone.utc),
            timezone=data.get("timezone") or "Europe/Paris",
            current_day=int(data.get("currentDay") or 1),
            is_active=bool(data.get("isActive", True)),
            last_visit_date=_as_utc(data.get("lastVisitDate")),
            created_at=_as_utc(data.get("createdAt")),
            updated_at=_as_utc(data.get("updatedAt")),
        )

    def to_firestore_dict(self) -> Dict[str, Any]:
        """Convert to Firestore-compatible dictionary."""
        data = {
            "coupleId": self.couple_id,
            "startDate": self.start_date,
            "timezone": self.timezone,
            "currentDay": self.current_day,
            "isActive": self.is_active,
        }
        if self.last_visit_date:
            data["lastVisitDate"] = self.last_visit_date
        return data


class DailyContent(BaseModel):
    """One day's question or challenge for a couple."""
    id: str
    couple_id: str
    kind: ContentKind = ContentKind.QUESTION
    content_key: str
    day: int = 0
    scheduled_date: Optional[str] = None  # YYYY-MM-DD
    scheduled_date_time: Optional[datetime] = None
    status: str = "pending"
    timezone: Optional[str] = None
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_firestore(cls, doc_id: str, data: Dict[str, Any], kind: ContentKind) -> Optional["DailyContent"]:
        """Decode a content document, or None when it has no content key."""
        content_key = data.get(kind.key_field)
        if not content_key:
            return None
        scheduled_date = data.get("scheduledDate")
        if isinstance(scheduled_date, datetime):
            scheduled_date = scheduled_date.strftime("%Y-%m-%d")
        return cls(
            id=doc_id,
            couple_id=data.get("coupleId") or "",
            kind=kind,
            content_key=content_key,
            day=int(data.get(kind.day_field) or 0),
            scheduled_date=scheduled_date,
            scheduled_date_time=_as_utc(data.get("scheduledDateTime")),
            status=data.get("status") or "pending",
            timezone=data.get("timezone"),
            is_completed=bool(data.get("isCompleted", False)),
            completed_at=_as_utc(data.get("completedAt")),
            created_at=_as_utc(data.get("createdAt")),
            updated_at=_as_utc(data.get("updatedAt")),
        )


class DailyResponse(BaseModel):
    """A chat message answering one day's question."""
    id: str
    content_id: str
    user_id: str
    user_name: str = ""
    text: str = ""
    responded_at: Optional[datetime] = None  # server timestamp, None until the write is acknowledged
    status: str = "answered"
    is_read_by_partner: bool = False

    @classmethod
    def from_firestore(cls, doc_id: str, content_id: str, data: Dict[str, Any]) -> Optional["DailyResponse"]:
        user_id = data.get("userId")
        if not user_id:
            return None
        return cls(
            id=data.get("id") or doc_id,
            content_id=content_id,
            user_id=user_id,
            user_name=data.get("userName") or "",
            text=data.get("text") or "",
            responded_at=_as_utc(data.get("respondedAt")),
            status=data.get("status") or "answered",
            is_read_by_partner=bool(data.get("isReadByPartner", False)),
        )


class UserSubscription(BaseModel):
    """Subscription flags read from the user document."""
    user_id: str
    is_subscribed: bool = False
    inherited_from: Optional[str] = None


# Callable payloads

class GenerateContentRequest(BaseModel):
    """Payload of the generation callable."""
    model_config = ConfigDict(populate_by_name=True)

    couple_id: str = Field(alias="coupleId")
    user_id: str = Field(alias="userId")
    day: int
    timezone: str


class SubmitResponseRequest(BaseModel):
    """Payload of the response submission callable."""
    model_config = ConfigDict(populate_by_name=True)

    content_id: str = Field(alias="contentId")
    text: str
    user_name: str = Field(alias="userName")
    user_id: str = Field(alias="userId")


class GenerationResult(BaseModel):
    success: bool
    message: str = ""


class SubmissionResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    response_id: Optional[str] = Field(default=None, alias="responseId")


# Routing states

class IntroRoute(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["intro"] = "intro"
    show_connect: bool


class PaywallRoute(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["paywall"] = "paywall"
    day: int


class MainRoute(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["main"] = "main"


class ErrorRoute(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["error"] = "error"
    message: str


class LoadingRoute(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["loading"] = "loading"


RoutingState = Union[IntroRoute, PaywallRoute, MainRoute, ErrorRoute, LoadingRoute]


class SyncSnapshot(BaseModel):
    """One consistent view of the live listeners' state."""
    model_config = ConfigDict(frozen=True)

    couple_id: Optional[str] = None
    settings: Optional[CoupleSettings] = None
    current_content: Optional[DailyContent] = None
    responses: List[DailyResponse] = Field(default_factory=list)
    content_loaded: bool = False
    sync_error: Optional[str] = None
    today: Optional[str] = None  # date the current content was selected for


# API models

class OpenSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    partner_id: Optional[str] = Field(default=None, alias="partnerId")
    user_name: Optional[str] = Field(default=None, alias="userName")
    timezone: Optional[str] = None
    fcm_token: Optional[str] = Field(default=None, alias="fcmToken")


class ResponseTextRequest(BaseModel):
    text: str


class CompletionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content_id: str = Field(alias="contentId")
    completed: bool


class SessionState(BaseModel):
    """Serializable state of a couple session."""
    model_config = ConfigDict(populate_by_name=True)

    kind: ContentKind
    couple_id: Optional[str] = Field(default=None, alias="coupleId")
    route: RoutingState
    expected_day: Optional[int] = Field(default=None, alias="expectedDay")
    current_content: Optional[DailyContent] = Field(default=None, alias="currentContent")
    responses: List[DailyResponse] = Field(default_factory=list)
