import socket
import uuid
from dataclasses import dataclass, replace
from threading import Lock
from typing import Dict, Iterable, List, Optional, Tuple

from common.messages import Conversation, Message, MessageType, FILE_TYPES, utc_now

DEFAULT_TITLE = "New Chat"


class RpcFailure(Exception):
    """Raised by a handler to report a user-facing error back to the caller."""


@dataclass   # decorator to automatically generate init, repr, etc.
class Client:   # container class for storing info about each client
    username: str     # unique username
    sock: socket.socket  # socket connected to the client
    aes_key: Optional[bytes] = None    # AES session key after the handshake


def _new_id() -> str:
    return uuid.uuid4().hex


class ServerState:
    '''
    Everything the server keeps in memory: connected clients plus the
    conversation and message tables. Every access goes through one lock
    because each client is served on its own thread.
    '''
    def __init__(self, clock=utc_now):
        self.lock = Lock()
        self.clients: Dict[str, Client] = {}
        self.conversations: Dict[str, Conversation] = {}
        self.messages: Dict[str, Message] = {}
        self._clock = clock

    # ---------- clients ----------
    def add_client(self, c: Client) -> bool:
        ''' This function adds a new client; False when the username is taken '''
        with self.lock:
            if c.username in self.clients:
                return False
            self.clients[c.username] = c
            return True

    def remove(self, username: str):
        with self.lock:
            self.clients.pop(username, None)

    def get(self, username: str) -> Optional[Client]:
        with self.lock:
            return self.clients.get(username)

    # ---------- conversations ----------
    def _owned(self, owner: str, conversation_id: str) -> Conversation:
        conv = self.conversations.get(conversation_id)
        if conv is None or conv.owner != owner:
            raise RpcFailure("Conversation not found")
        return conv

    def _visible_messages(self, conversation_id: str) -> List[Message]:
        msgs = [m for m in self.messages.values()
                if m.conversation_id == conversation_id and not m.is_deleted]
        msgs.sort(key=lambda m: m.created_at)
        return msgs

    def list_conversations(self, owner: str) -> List[Conversation]:
        ''' Conversations of one user, most recently updated first, with their latest message '''
        with self.lock:
            convs = [c for c in self.conversations.values() if c.owner == owner]
            convs.sort(key=lambda c: c.updated_at, reverse=True)
            out = []
            for c in convs:
                msgs = self._visible_messages(c.id)
                out.append(replace(c, last_message=msgs[-1] if msgs else None))
            return out

    def create_conversation(self, owner: str, title: Optional[str] = None) -> Conversation:
        now = self._clock()
        conv = Conversation(id=_new_id(), title=title or DEFAULT_TITLE, owner=owner,
                            created_at=now, updated_at=now)
        with self.lock:
            self.conversations[conv.id] = conv
        return conv

    def rename_conversation(self, owner: str, conversation_id: str, title: str) -> Conversation:
        with self.lock:
            conv = self._owned(owner, conversation_id)
            conv.title = title
            return replace(conv)

    def delete_conversation(self, owner: str, conversation_id: str) -> Conversation:
        ''' Remove a conversation together with all of its messages '''
        with self.lock:
            conv = self._owned(owner, conversation_id)
            del self.conversations[conversation_id]
            for mid in [m.id for m in self.messages.values() if m.conversation_id == conversation_id]:
                del self.messages[mid]
            return conv

    def get_conversation(self, owner: str, conversation_id: str):
        ''' Returns (conversation, non-deleted messages) '''
        with self.lock:
            conv = self._owned(owner, conversation_id)
            return replace(conv), self._visible_messages(conversation_id)

    # ---------- messages ----------
    def _add_message(self, owner: str, msg: Message) -> Message:
        with self.lock:
            conv = self._owned(owner, msg.conversation_id)
            conv.updated_at = msg.created_at
            self.messages[msg.id] = msg
            return msg

    def send_text(self, owner: str, conversation_id: str, content: str) -> Message:
        msg = Message(id=_new_id(), conversation_id=conversation_id, type=MessageType.TEXT,
                      content=content, created_at=self._clock())
        return self._add_message(owner, msg)

    def send_file(self, owner: str, conversation_id: str, type: MessageType, content: str,
                  original_name: Optional[str] = None, mime_type: Optional[str] = None,
                  size: Optional[int] = None) -> Message:
        if type not in FILE_TYPES:
            raise RpcFailure(f"Invalid file message type: {type.value}")
        msg = Message(id=_new_id(), conversation_id=conversation_id, type=type, content=content,
                      created_at=self._clock(), original_name=original_name,
                      mime_type=mime_type, size=size)
        return self._add_message(owner, msg)

    def list_messages(self, owner: str, conversation_id: str) -> List[Message]:
        with self.lock:
            self._owned(owner, conversation_id)
            return self._visible_messages(conversation_id)

    def delete_messages(self, owner: str, ids: Iterable[str]) -> Tuple[int, List[str]]:
        '''
        Soft-delete messages in conversations the owner holds.
        Unknown or foreign ids are skipped.
        Returns (number of messages deleted, affected conversation ids).
        '''
        count = 0
        touched = []
        with self.lock:
            for mid in ids:
                msg = self.messages.get(mid)
                if msg is None or msg.is_deleted:
                    continue
                conv = self.conversations.get(msg.conversation_id)
                if conv is None or conv.owner != owner:
                    continue
                msg.is_deleted = True
                count += 1
                if msg.conversation_id not in touched:
                    touched.append(msg.conversation_id)
        return count, touched
