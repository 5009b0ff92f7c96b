"""
Data models for storage layer.

Defines database entities and data structures.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Profile:
    """Account profile; role feeds access control, the rest feeds persona."""
    id: str
    email: Optional[str] = None
    role: Optional[str] = None
    professional_role: Optional[str] = None
    specialty: Optional[str] = None
    title: Optional[str] = None


@dataclass(frozen=True)
class UsageRecord:
    """Question counter for one identity.

    Only ever incremented by the usage gate; resets and deletion belong
    to account management.
    """
    user_id: str
    questions_count: int


@dataclass(frozen=True)
class ChatSession:
    """Conversation container; id is supplied by the client."""
    id: str
    user_id: str
    title: str
    region: str = "International"
    country: str = "International"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class ChatMessage:
    """One message in a session, ordered by insertion."""
    session_id: str
    user_id: str
    role: str  # "user" or "model"
    content: str
    created_at: Optional[datetime] = None
    id: Optional[int] = None
