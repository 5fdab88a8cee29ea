"""Domain records exchanged between the sagas and the gateway."""
from __future__ import annotations
from dataclasses import asdict, dataclass, field
from typing import Any, Optional


@dataclass
class Account:
    """Credential-bearing identity record owned by the identity provider."""
    id: str
    email: str
    metadata: dict[str, Any] = field(default_factory=dict)
    confirmed: bool = False


@dataclass
class Profile:
    """Business-facing record owned by the relational store (id == Account.id)."""
    id: str
    display_name: str
    email: str
    role: str
    badge_code: str
    location_id: Optional[str] = None
    password_length: Optional[int] = None
    avatar_url: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AvatarUpload:
    """Opaque avatar artifact supplied at creation time."""
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class CreateAccountRequest:
    display_name: str
    email: str
    role: str
    password: str
    location_id: Optional[str] = None
    avatar: Optional[AvatarUpload] = None


@dataclass(frozen=True)
class UpdateAccountRequest:
    id: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    password: Optional[str] = None
