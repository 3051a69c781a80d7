"""Records exchanged with the messaging client and passed between handlers."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

TEXT_CONTENT_TYPE = "text"


@dataclass(frozen=True)
class InboundMessage:
    sender_inbox_id: str
    conversation_id: str
    content_type_id: str
    content: Any

    @classmethod
    def from_dict(cls, payload: dict) -> "InboundMessage":
        content_type = payload.get("content_type") or {}
        if isinstance(content_type, dict):
            type_id = content_type.get("type_id") or ""
        else:
            type_id = str(content_type)
        return cls(
            sender_inbox_id=str(payload.get("sender_inbox_id") or ""),
            conversation_id=str(payload.get("conversation_id") or ""),
            content_type_id=type_id,
            content=payload.get("content"),
        )

    @property
    def is_text(self) -> bool:
        return self.content_type_id == TEXT_CONTENT_TYPE


@dataclass(frozen=True)
class GroupMember:
    inbox_id: str


@dataclass(frozen=True)
class Identifier:
    identifier: str
    kind: str = "ethereum"


@dataclass(frozen=True)
class Installation:
    id: str


@dataclass
class InboxState:
    inbox_id: str = ""
    identifiers: List[Identifier] = field(default_factory=list)
    installations: List[Installation] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: dict) -> "InboxState":
        return cls(
            inbox_id=str(payload.get("inbox_id") or ""),
            identifiers=[
                Identifier(
                    identifier=str(entry.get("identifier") or ""),
                    kind=str(entry.get("kind") or "ethereum"),
                )
                for entry in payload.get("identifiers") or []
            ],
            installations=[
                Installation(id=str(entry.get("id") or ""))
                for entry in payload.get("installations") or []
            ],
        )


@dataclass(frozen=True)
class KeyPackageLifetime:
    not_before: int
    not_after: int


@dataclass
class InstallationStatus:
    installation_id: str
    lifetime: Optional[KeyPackageLifetime] = None
    validation_error: Optional[str] = None

    @classmethod
    def from_dict(cls, installation_id: str, payload: dict) -> "InstallationStatus":
        lifetime = payload.get("lifetime")
        return cls(
            installation_id=installation_id,
            lifetime=(
                KeyPackageLifetime(
                    not_before=int(lifetime["not_before"]),
                    not_after=int(lifetime["not_after"]),
                )
                if lifetime
                else None
            ),
            validation_error=payload.get("validation_error") or None,
        )


# Mapping returned by the key-package status query. A value of None means the
# query had nothing for that installation id.
StatusMap = Dict[str, Optional[InstallationStatus]]


@dataclass
class InboxReport:
    inbox_id: str
    address: str
    total_installations: int
    valid_count: int
    invalid_count: int
    # one entry per status-map key, in map order; a missing status becomes an
    # entry with neither lifetime nor validation_error
    entries: List[InstallationStatus] = field(default_factory=list)
