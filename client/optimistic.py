"""
Optimistic message tracking for the chat view.

A message the user sends is shown right away as a local entry with status
"sending". When the server confirms it, the local entry is dropped and the
server copy (delivered through the normal message list refresh) takes its
place. When the send fails the entry stays visible as "failed" until the
user retries or deletes it.

Allowed transitions per local entry:

    sending -> removed | failed
    failed  -> sending

Callbacks for ids that are no longer tracked are ignored, so an entry that
has been removed never comes back. An entry whose callback is never
delivered (e.g. the client shuts down mid-request) stays "sending"; local
entries are never persisted, so there is nothing to clean up across runs.
"""
import uuid
from typing import Callable, Dict, Iterable, List, Optional, Union

from common.messages import Message, MessageType, utc_now

SENDING = "sending"
FAILED = "failed"
DEFAULT_ERROR = "Message failed to send"

# send(message, on_ok, on_error): starts the network call and returns at once
SendFn = Callable[[Message, Callable[..., None], Callable[[BaseException], None]], None]


def make_temp_id() -> str:
    ''' Temporary ids carry a "temp-" prefix so they never collide with server ids '''
    return f"temp-{uuid.uuid4()}"


def error_text(error: Optional[BaseException]) -> str:
    text = str(error) if error is not None else ""
    return text or DEFAULT_ERROR


class MessageReconciler:
    '''
    Owns the local (not yet confirmed) messages of one client session.
    All methods must be called from the UI thread.

    Args:
        send: transport used for the first attempt and every retry
        on_change: called after any change so the view can re-render
        id_factory: temporary id generator
        clock: returns the creation time of new local entries
    '''

    def __init__(self, send: SendFn, on_change: Optional[Callable[[], None]] = None,
                 id_factory: Callable[[], str] = make_temp_id, clock=utc_now):
        self._send = send
        self._on_change = on_change
        self._id_factory = id_factory
        self._clock = clock
        self._pending: Dict[str, Message] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, temp_id: str) -> bool:
        return temp_id in self._pending

    def get(self, temp_id: str) -> Optional[Message]:
        return self._pending.get(temp_id)

    def messages(self, conversation_id: Optional[str] = None) -> List[Message]:
        ''' Local entries in creation order, optionally for one conversation '''
        return [m for m in self._pending.values()
                if conversation_id is None or m.conversation_id == conversation_id]

    def _changed(self):
        if self._on_change:
            self._on_change()

    def _dispatch(self, temp_id: str):
        message = self._pending[temp_id]
        self._send(message,
                   lambda *_: self.on_success(temp_id),
                   lambda error: self.on_failure(temp_id, error))

    def begin_send(self, conversation_id: str, type: MessageType, content: str,
                   original_name: Optional[str] = None, mime_type: Optional[str] = None,
                   size: Optional[int] = None) -> str:
        '''
        Show a message immediately and start sending it.
        Returns the temporary id without waiting for the network.
        '''
        temp_id = self._id_factory()
        self._pending[temp_id] = Message(
            id=temp_id,
            conversation_id=conversation_id,
            type=type,
            content=content,
            created_at=self._clock(),
            original_name=original_name,
            mime_type=mime_type,
            size=size,
            status=SENDING,
        )
        self._changed()
        self._dispatch(temp_id)
        return temp_id

    def on_success(self, temp_id: str) -> bool:
        ''' The server accepted the message: stop tracking the local copy '''
        if self._pending.pop(temp_id, None) is None:
            return False
        self._changed()
        return True

    def on_failure(self, temp_id: str, error: Optional[BaseException] = None) -> bool:
        ''' The send failed: keep the entry visible with the error text '''
        message = self._pending.get(temp_id)
        if message is None:
            return False
        self._pending[temp_id] = message.with_status(FAILED, error_text(error))
        self._changed()
        return True

    def retry(self, message: Union[Message, str]) -> bool:
        '''
        Re-send a failed entry with the same content.
        Does nothing (returns False) unless the entry is tracked and "failed".
        '''
        temp_id = message.id if isinstance(message, Message) else message
        current = self._pending.get(temp_id)
        if current is None or current.status != FAILED:
            return False
        self._pending[temp_id] = current.with_status(SENDING)
        self._changed()
        self._dispatch(temp_id)
        return True

    def remove(self, temp_id: str) -> bool:
        ''' The user deleted a local entry '''
        return self.remove_many([temp_id]) == 1

    def remove_many(self, temp_ids: Iterable[str]) -> int:
        removed = 0
        for temp_id in temp_ids:
            if self._pending.pop(temp_id, None) is not None:
                removed += 1
        if removed:
            self._changed()
        return removed

    def forget_conversation(self, conversation_id: str) -> int:
        ''' Drop every local entry of a deleted conversation '''
        return self.remove_many([m.id for m in self.messages(conversation_id)])


def merge_view(server_messages: Iterable[Message], local_messages: Iterable[Message],
               active_conversation_id: Optional[str]) -> List[Message]:
    '''
    Build the list the chat view renders.

    Only entries of the active conversation are kept. A server entry wins
    over any other entry with the same id, so each id appears once. The
    result is sorted by creation time; ties keep server entries first.
    Pure function of its inputs.
    '''
    if not active_conversation_id:
        return []

    seen = set()
    combined: List[Message] = []
    for source in (server_messages, local_messages):
        for m in source:
            if m.conversation_id != active_conversation_id or m.is_deleted or m.id in seen:
                continue
            seen.add(m.id)
            combined.append(m)
    combined.sort(key=lambda m: m.created_at)
    return combined
