import datetime
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Dict, Any


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def iso_z(dt: datetime.datetime) -> str:
    '''Format an aware datetime as ISO 8601 UTC with a trailing "Z" (millisecond precision)'''
    dt = dt.astimezone(datetime.timezone.utc)
    return dt.replace(tzinfo=None).isoformat(timespec="milliseconds") + "Z"


def parse_iso(ts: str) -> datetime.datetime:
    '''Parse an ISO string (with or without trailing "Z"); naive values are treated as UTC'''
    if ts.endswith("Z"):
        ts = ts[:-1] + "+00:00"
    dt = datetime.datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt


# Envelope fields remain in plaintext so server can route without decrypting.
@dataclass
class Envelope:
    type: str            # "auth" | "key" | "rpc" | "result" | "changed" | "system" | "error"
    sender: Optional[str]
    to: Optional[str]
    ts: str              # ISO 8601
    payload: Dict[str, Any]  # plaintext during handshake, encrypted body afterwards
    id: Optional[str] = None  # correlates an "rpc" request with its "result"

    def to_dict(self) -> Dict[str, Any]:
        d = {"type": self.type, "sender": self.sender, "to": self.to,
             "ts": self.ts, "payload": self.payload}
        if self.id is not None:
            d["id"] = self.id
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Envelope":
        return cls(type=d.get("type", ""), sender=d.get("sender"), to=d.get("to"),
                   ts=d.get("ts", ""), payload=d.get("payload") or {}, id=d.get("id"))


class MessageType(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    FILE = "FILE"
    VIDEO = "VIDEO"


FILE_TYPES = (MessageType.IMAGE, MessageType.FILE, MessageType.VIDEO)


@dataclass
class Message:
    '''
    One chat message. TEXT messages carry the text in `content`; the other
    types carry the stored file URL there plus the optional file metadata.
    `status` is only set on locally-originated messages that the server has
    not confirmed yet ("sending" or "failed").
    '''
    id: str
    conversation_id: str
    type: MessageType
    content: str
    created_at: datetime.datetime = field(default_factory=utc_now)
    original_name: Optional[str] = None
    mime_type: Optional[str] = None
    size: Optional[int] = None
    is_deleted: bool = False
    status: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def is_confirmed(self) -> bool:
        return self.status is None

    def with_status(self, status: Optional[str], error_message: Optional[str] = None) -> "Message":
        return replace(self, status=status, error_message=error_message)

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "id": self.id,
            "conversationId": self.conversation_id,
            "type": self.type.value,
            "content": self.content,
            "originalName": self.original_name,
            "mimeType": self.mime_type,
            "size": self.size,
            "createdAt": iso_z(self.created_at),
            "isDeleted": self.is_deleted,
        }
        if self.status is not None:
            d["status"] = self.status
            d["errorMessage"] = self.error_message
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Message":
        return cls(
            id=d["id"],
            conversation_id=d["conversationId"],
            type=MessageType(d["type"]),
            content=d.get("content", ""),
            created_at=parse_iso(d["createdAt"]),
            original_name=d.get("originalName"),
            mime_type=d.get("mimeType"),
            size=d.get("size"),
            is_deleted=bool(d.get("isDeleted", False)),
            status=d.get("status"),
            error_message=d.get("errorMessage"),
        )


@dataclass
class Conversation:
    id: str
    title: str
    owner: str
    created_at: datetime.datetime = field(default_factory=utc_now)
    updated_at: datetime.datetime = field(default_factory=utc_now)
    last_message: Optional[Message] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "owner": self.owner,
            "createdAt": iso_z(self.created_at),
            "updatedAt": iso_z(self.updated_at),
            "lastMessage": self.last_message.to_dict() if self.last_message else None,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Conversation":
        last = d.get("lastMessage")
        return cls(
            id=d["id"],
            title=d.get("title", ""),
            owner=d.get("owner", ""),
            created_at=parse_iso(d["createdAt"]),
            updated_at=parse_iso(d["updatedAt"]),
            last_message=Message.from_dict(last) if last else None,
        )


@dataclass
class UploadedFile:
    url: str
    name: str
    type: str    # MIME type as reported by the uploader
    size: int

    def message_type(self) -> MessageType:
        if self.type.startswith("image/"):
            return MessageType.IMAGE
        if self.type.startswith("video/"):
            return MessageType.VIDEO
        return MessageType.FILE

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "name": self.name, "type": self.type, "size": self.size}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "UploadedFile":
        return cls(url=d["url"], name=d.get("name", ""), type=d.get("type", ""), size=int(d.get("size", 0)))
