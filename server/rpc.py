"""
Remote procedures exposed to clients.

Each handler receives the server context, the authenticated username and
the request params, and returns (data, changed) where `changed` lists the
conversation ids whose message list was modified so the caller can push
refresh notices.
"""
import traceback
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Tuple

from common.crypto import b64, b64d
from common.messages import MessageType
from server.state import ServerState, RpcFailure
from server.uploads import UploadStore

Result = Tuple[Any, List[str]]


@dataclass
class Context:
    state: ServerState
    uploads: UploadStore


HANDLERS: Dict[str, Callable[[Context, str, Dict[str, Any]], Result]] = {}


def handler(name: str):
    def register(fn):
        HANDLERS[name] = fn
        return fn
    return register


def _str(params: Dict[str, Any], key: str, required: bool = True):
    value = params.get(key)
    if value is None and not required:
        return None
    if not isinstance(value, str):
        raise RpcFailure(f"Invalid parameter: {key}")
    return value


# ---------- conversations ----------
@handler("conversation.list")
def conversation_list(ctx: Context, user: str, params) -> Result:
    return [c.to_dict() for c in ctx.state.list_conversations(user)], []


@handler("conversation.create")
def conversation_create(ctx: Context, user: str, params) -> Result:
    title = _str(params, "title", required=False)
    return ctx.state.create_conversation(user, title).to_dict(), []


@handler("conversation.rename")
def conversation_rename(ctx: Context, user: str, params) -> Result:
    conv = ctx.state.rename_conversation(user, _str(params, "id"), _str(params, "title"))
    return conv.to_dict(), []


@handler("conversation.delete")
def conversation_delete(ctx: Context, user: str, params) -> Result:
    conv = ctx.state.delete_conversation(user, _str(params, "id"))
    return conv.to_dict(), []


@handler("conversation.get")
def conversation_get(ctx: Context, user: str, params) -> Result:
    conv, messages = ctx.state.get_conversation(user, _str(params, "id"))
    data = conv.to_dict()
    data["messages"] = [m.to_dict() for m in messages]
    return data, []


# ---------- messages ----------
@handler("message.sendText")
def message_send_text(ctx: Context, user: str, params) -> Result:
    cid = _str(params, "conversationId")
    msg = ctx.state.send_text(user, cid, _str(params, "content"))
    return msg.to_dict(), [cid]


@handler("message.sendFile")
def message_send_file(ctx: Context, user: str, params) -> Result:
    cid = _str(params, "conversationId")
    try:
        mtype = MessageType(params.get("type"))
    except ValueError:
        raise RpcFailure(f"Invalid file message type: {params.get('type')}")
    size = params.get("size")
    if size is not None and not isinstance(size, int):
        raise RpcFailure("Invalid parameter: size")
    msg = ctx.state.send_file(user, cid, mtype, _str(params, "content"),
                              original_name=_str(params, "originalName", required=False),
                              mime_type=_str(params, "mimeType", required=False),
                              size=size)
    return msg.to_dict(), [cid]


@handler("message.listByConversation")
def message_list(ctx: Context, user: str, params) -> Result:
    msgs = ctx.state.list_messages(user, _str(params, "conversationId"))
    return [m.to_dict() for m in msgs], []


@handler("message.delete")
def message_delete(ctx: Context, user: str, params) -> Result:
    count, changed = ctx.state.delete_messages(user, [_str(params, "id")])
    return {"count": count}, changed


@handler("message.batchDelete")
def message_batch_delete(ctx: Context, user: str, params) -> Result:
    ids = params.get("ids")
    if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
        raise RpcFailure("Invalid parameter: ids")
    count, changed = ctx.state.delete_messages(user, ids)
    return {"count": count}, changed


# ---------- files ----------
@handler("upload.files")
def upload_files(ctx: Context, user: str, params) -> Result:
    files = params.get("files") or []
    if not files:
        raise RpcFailure("No files provided.")
    cid = _str(params, "conversationId", required=False)
    uploaded = []
    for f in files:
        try:
            data = b64d(f["data"])
        except (KeyError, TypeError, ValueError, AttributeError):
            raise RpcFailure("Invalid file payload")
        uploaded.append(ctx.uploads.save(cid, f.get("name") or "file", f.get("type") or "", data))
    return [u.to_dict() for u in uploaded], []


@handler("upload.fetch")
def upload_fetch(ctx: Context, user: str, params) -> Result:
    return {"data": b64(ctx.uploads.read(_str(params, "url")))}, []


def dispatch(ctx: Context, user: str, method: str, params: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    '''
    Run one remote procedure.
    Input:
        - ctx: server context (state + upload store)
        - user: authenticated username
        - method: procedure name, e.g. "message.sendText"
        - params: request parameters
    Output: ({"ok": True, "data": ...} or {"ok": False, "error": ...}, changed conversation ids)
    '''
    fn = HANDLERS.get(method)
    if fn is None:
        return {"ok": False, "error": f"Unknown method: {method}"}, []
    try:
        data, changed = fn(ctx, user, params if isinstance(params, dict) else {})
    except RpcFailure as e:
        return {"ok": False, "error": str(e)}, []
    except Exception:
        # print for server operator
        traceback.print_exc()
        return {"ok": False, "error": "Internal error"}, []
    return {"ok": True, "data": data}, changed
