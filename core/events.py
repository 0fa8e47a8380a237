"""
Client events.

Immutable event objects describing what the auth client did or needs the
presentation layer to do. The client never renders or routes; it publishes
and whichever UI is attached reacts.

Event Categories:
- Notification: transient success/error messages (toasts)
- NavigationRequested: route changes (login, timeline, challenge pages)
- Session signals: invalidated by the server, ended locally, reload needed
- Step-up signals: auth state changes, device verification demanded
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


class Routes:
    """Routes the client may ask the presentation layer to show."""

    LOGIN = "/login"
    TIMELINE = "/timeline"
    TWO_FACTOR = "/two-factor"
    DEVICE_VERIFICATION = "/device-verification"
    AGE_VERIFICATION = "/age-verification"


@dataclass(frozen=True, kw_only=True)
class ClientEvent:
    """Base class for all client events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# PRESENTATION EVENTS
# =============================================================================


class NotificationLevel(Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


@dataclass(frozen=True)
class Notification(ClientEvent):
    """A transient message for the user."""
    level: NotificationLevel = NotificationLevel.INFO
    message: str = ""

    @classmethod
    def success(cls, message: str) -> "Notification":
        return cls(level=NotificationLevel.SUCCESS, message=message)

    @classmethod
    def error(cls, message: str) -> "Notification":
        return cls(level=NotificationLevel.ERROR, message=message)


@dataclass(frozen=True)
class NavigationRequested(ClientEvent):
    """The client wants the given route shown."""
    route: str = Routes.LOGIN
    params: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# SESSION EVENTS
# =============================================================================


@dataclass(frozen=True)
class SessionInvalidated(ClientEvent):
    """The server answered 401; the token is no longer usable."""
    reason: str = ""


@dataclass(frozen=True)
class SessionEnded(ClientEvent):
    """Local session state was torn down (logout or logout-all)."""
    everywhere: bool = False


@dataclass(frozen=True)
class ReloadRequested(ClientEvent):
    """Anti-forgery handshake must be re-established (HTTP 419)."""
    reason: str = ""


# =============================================================================
# STEP-UP EVENTS
# =============================================================================


@dataclass(frozen=True)
class AuthStateChanged(ClientEvent):
    """The step-up state machine moved between states."""
    previous: Any = None  # AuthState; Any avoids a circular import
    current: Any = None


@dataclass(frozen=True)
class DeviceVerificationRequired(ClientEvent):
    """The server flagged the current device as unrecognised."""
    fingerprint: str | None = None
    user_id: int | str | None = None
    resend_available_at: int | None = None
