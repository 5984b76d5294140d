"""Data types for conversational and long-term agent memory."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

# Fixed-width UTC format so stored timestamps compare lexicographically
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_timestamp(value: datetime | None) -> str | None:
    """Serialize a datetime as a naive UTC string."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIMESTAMP_FORMAT)


def from_db_timestamp(value: str | None) -> datetime | None:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


class SessionStatus(str, Enum):
    """Lifecycle states of a conversation session."""

    ACTIVE = "active"
    ARCHIVED = "archived"
    DELETED = "deleted"


class MemoryCategory(str, Enum):
    """Kinds of durable memory."""

    PREFERENCE = "preference"
    FACT = "fact"
    INSTRUCTION = "instruction"


class MemorySource(str, Enum):
    """Where a memory record came from."""

    USER_EXPLICIT = "user_explicit"
    INFERRED = "inferred"
    SYSTEM = "system"
    CONVERSATION = "conversation"


@dataclass
class Turn:
    """One message in a session's turn log."""

    session_id: str
    role: str
    content: str
    created_at: datetime | None = None
    id: int | None = None


@dataclass
class ConversationSession:
    """A conversation owned by one user."""

    id: str
    user_id: str
    title: str | None = None
    status: SessionStatus = SessionStatus.ACTIVE
    created_at: datetime | None = None
    last_activity_at: datetime | None = None
    turns: list[Turn] = field(default_factory=list)


@dataclass
class MemoryRecord:
    """A durable preference, fact or instruction remembered across sessions."""

    user_id: str
    category: MemoryCategory
    key: str
    value: str
    confidence: float = 1.0
    expires_at: datetime | None = None
    last_used_at: datetime | None = None
    use_count: int = 0
    is_active: bool = True
    source_type: MemorySource = MemorySource.USER_EXPLICIT
    source_session_id: str | None = None
    id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
        self.category = MemoryCategory(self.category)
        self.source_type = MemorySource(self.source_type)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for tool results."""
        return {
            "id": self.id,
            "category": self.category.value,
            "key": self.key,
            "value": self.value,
            "confidence": self.confidence,
            "use_count": self.use_count,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass
class UserContext:
    """Business context for one user, shown at the top of the memory block."""

    user_id: str
    company_name: str | None = None
    default_currency: str | None = None
    fiscal_year_end: str | None = None
    industry: str | None = None
    invoice_prefix: str | None = None
    quotation_prefix: str | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "company_name": self.company_name,
            "default_currency": self.default_currency,
            "fiscal_year_end": self.fiscal_year_end,
            "industry": self.industry,
            "invoice_prefix": self.invoice_prefix,
            "quotation_prefix": self.quotation_prefix,
        }


@dataclass
class AuditLogEntry:
    """Record of one write-tool invocation."""

    user_id: str
    action: str
    resource_type: str | None = None
    success: bool = True
    error_message: str | None = None
    session_id: str | None = None
    financial_impact: dict[str, Any] | None = None
    id: int | None = None
    created_at: datetime | None = None
