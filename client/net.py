import mimetypes, os, socket, threading, uuid
from typing import Optional, Callable, Dict, Any, List, Tuple

from common.protocol import send_json, recv_json, forget
from common.crypto import aes_key, rsa_wrap_key, encrypt_body, decrypt_body, b64, b64d, CryptoError
from common.messages import Message, MessageType, UploadedFile, iso_z, utc_now

OnResult = Callable[[Any], None]
OnError = Callable[[BaseException], None]
Parse = Optional[Callable[[Any], Any]]


class DuplicateUsernameError(Exception):
    """Raised when the server rejects an auth because the username is already in use."""
    pass


class RpcError(Exception):
    """A remote procedure failed; the message is the server's error text."""
    pass


class NetClient:
    ''' Network client for chat application '''
    def __init__(self, host: str, port: int, username: str,
                 on_message: Optional[Callable[[Dict[str,Any]], None]] = None):
        self.host, self.port, self.username = host, port, username
        self.sock: Optional[socket.socket] = None
        # Backlog notices until UI attaches the handler; then flush
        self._on_message: Optional[Callable[[Dict[str,Any]], None]] = None
        self._backlog: List[Dict[str,Any]] = []
        if on_message:
            self.on_message = on_message
        self.session_key: Optional[bytes] = None   # AES session key after key-exchange
        self.recv_thread: Optional[threading.Thread] = None
        self.running = False
        self._calls: Dict[str, Tuple[OnResult, OnError, Parse]] = {}   # request id -> callbacks
        self._calls_lock = threading.Lock()

    @property
    def on_message(self) -> Optional[Callable[[Dict[str,Any]], None]]:
        ''' Callback for server notices (system text, "changed", errors); payloads are already decrypted '''
        return self._on_message

    @on_message.setter
    def on_message(self, cb: Optional[Callable[[Dict[str,Any]], None]]):
        '''
        Set the callback for incoming notices. If there are any backlog notices received before
        the UI attached, flush them now.
        '''
        self._on_message = cb
        if cb and self._backlog:
            pending = self._backlog
            self._backlog = []
            for env in pending:
                try:
                    cb(env)
                except Exception as e:
                    # Ignore UI errors to avoid breaking network thread
                    print(f"⚠ Warning: notice handler failed: {e}")

    def iso_now(self):
        return iso_z(utc_now())

    def connect(self):
        # Establish a TCP connection to the chat server.
        self.sock = socket.create_connection((self.host, self.port))
        self.sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        send_json(self.sock, {"type":"auth","sender":None,"to":None,"ts":self.iso_now(),
                              "payload":{"username": self.username}})
        env = recv_json(self.sock)
        # Handle duplicate username gracefully so caller can show inline error
        if env.get("type") == "error":
            code = (env.get("payload") or {}).get("code")
            self._drop_socket()
            if code == "DUPLICATE_USERNAME":
                raise DuplicateUsernameError("Username already exists")
            raise RuntimeError(f"Server error: {code}")

        server_pub = env["payload"]["server_pub_pem"]
        self.session_key = aes_key()
        wrapped = rsa_wrap_key(server_pub, self.session_key)
        # Start listening BEFORE sending the wrapped key so the welcome notice is not missed
        self.running = True
        self.recv_thread = threading.Thread(target=self._recv_loop, daemon=True)
        self.recv_thread.start()
        send_json(self.sock, {"type":"key","sender":self.username,"to":None,"ts":self.iso_now(),
                              "payload":{"wrapped": wrapped}})

    def _drop_socket(self):
        try:
            if self.sock:
                forget(self.sock)
                self.sock.close()
        except OSError:
            pass
        finally:
            self.sock = None

    def close(self):
        try:
            if self.sock:
                send_json(self.sock, {"type":"system","sender":self.username,"to":None,"ts":self.iso_now(),
                                      "payload":{"event":"leave"}})
        except OSError:
            pass
        self.running = False
        self._drop_socket()

    # --------- remote procedures ----------
    def call(self, method: str, params: Dict[str, Any], on_result: OnResult, on_error: OnError,
             parse: Parse = None):
        '''
        Start a remote procedure and return immediately.
        Exactly one of on_result(data) / on_error(exc) is invoked later from the
        receive thread (or right away if the request cannot be sent).
        `parse` converts the raw result data; a malformed result goes to on_error.
        '''
        req_id = uuid.uuid4().hex
        with self._calls_lock:
            self._calls[req_id] = (on_result, on_error, parse)
        try:
            if not self.sock or not self.session_key:
                raise ConnectionError("Not connected.")
            send_json(self.sock, {"type":"rpc","id":req_id,"sender":self.username,"to":None,"ts":self.iso_now(),
                                  "payload": encrypt_body(self.session_key, {"method": method, "params": params})})
        except OSError as e:
            self._complete(req_id, error=e)

    def _complete(self, req_id: Optional[str], data: Any = None, error: Optional[BaseException] = None):
        with self._calls_lock:
            callbacks = self._calls.pop(req_id, None)
        if callbacks is None:
            return
        on_result, on_error, parse = callbacks
        if error is None and parse is not None:
            try:
                data = parse(data)
            except (KeyError, TypeError, ValueError) as e:
                error = RpcError(f"Malformed response: {e}")
        if error is not None:
            on_error(error)
        else:
            on_result(data)

    def send_text(self, conversation_id: str, content: str, on_result: OnResult, on_error: OnError):
        self.call("message.sendText", {"conversationId": conversation_id, "content": content},
                  on_result, on_error, parse=Message.from_dict)

    def send_file(self, conversation_id: str, type: MessageType, content: str,
                  original_name: Optional[str], mime_type: Optional[str], size: Optional[int],
                  on_result: OnResult, on_error: OnError):
        params = {"conversationId": conversation_id, "type": type.value, "content": content,
                  "originalName": original_name, "mimeType": mime_type, "size": size}
        self.call("message.sendFile", params, on_result, on_error, parse=Message.from_dict)

    def send_message(self, message: Message, on_result: OnResult, on_error: OnError):
        ''' Send (or re-send) a message built locally, choosing the procedure by type '''
        if message.type == MessageType.TEXT:
            self.send_text(message.conversation_id, message.content, on_result, on_error)
        else:
            self.send_file(message.conversation_id, message.type, message.content,
                           message.original_name, message.mime_type, message.size,
                           on_result, on_error)

    def list_messages(self, conversation_id: str, on_result: OnResult, on_error: OnError):
        self.call("message.listByConversation", {"conversationId": conversation_id},
                  on_result, on_error,
                  parse=lambda d: [Message.from_dict(m) for m in d])

    def upload_files(self, conversation_id: Optional[str], paths: List[str],
                     on_result: OnResult, on_error: OnError):
        '''
        Upload local files. on_result receives a list of UploadedFile.
        Reading happens on the caller's thread; OSError goes to on_error.
        '''
        try:
            files = []
            for path in paths:
                with open(path, "rb") as f:
                    data = f.read()
                mime, _ = mimetypes.guess_type(path)
                files.append({"name": os.path.basename(path), "type": mime or "application/octet-stream",
                              "data": b64(data)})
        except OSError as e:
            on_error(e)
            return
        self.call("upload.files", {"conversationId": conversation_id, "files": files},
                  on_result, on_error,
                  parse=lambda d: [UploadedFile.from_dict(u) for u in d])

    def fetch(self, url: str, on_result: OnResult, on_error: OnError):
        ''' Download stored bytes by upload URL '''
        self.call("upload.fetch", {"url": url}, on_result, on_error,
                  parse=lambda d: b64d(d["data"]))

    # --------- receiving ----------
    def _handle(self, env: Dict[str, Any]):
        t = env.get("type")
        if t == "result":
            try:
                body = decrypt_body(self.session_key, env.get("payload") or {})
            except CryptoError as e:
                self._complete(env.get("id"), error=e)
                return
            if body.get("ok"):
                self._complete(env.get("id"), data=body.get("data"))
            else:
                self._complete(env.get("id"), error=RpcError(body.get("error") or "Request failed"))
            return

        if t in ("system", "changed"):
            try:
                env = dict(env, payload=decrypt_body(self.session_key, env.get("payload") or {}))
            except CryptoError:
                return
        self._deliver(env)

    def _deliver(self, env: Dict[str, Any]):
        if self._on_message:
            self._on_message(env)
        else:
            # No handler yet (UI not attached) → backlog to replay later
            self._backlog.append(env)

    def _fail_pending(self, error: BaseException):
        with self._calls_lock:
            pending = list(self._calls.values())
            self._calls.clear()
        for _, on_error, _ in pending:
            on_error(error)

    def _recv_loop(self):
        ''' Thread function to receive messages from server '''
        try:
            while self.running:
                self._handle(recv_json(self.sock))
        except Exception as e:
            # Socket closed or error; fail in-flight calls and notify UI
            was_running = self.running
            self.running = False
            self._fail_pending(ConnectionError("Disconnected."))
            if was_running:
                print(f"[CLIENT DEBUG] receive loop stopped: {e}")
                self._deliver({"type":"system","sender":None,"to":"*","ts":self.iso_now(),
                               "payload":{"text":"Disconnected."}})
