import argparse, socket, threading, traceback
from typing import Optional, Dict, Any

from common.protocol import send_json, recv_json, forget, ProtocolError
from common.crypto import rsa_generate, rsa_public_pem, rsa_unwrap_key, encrypt_body, decrypt_body, CryptoError
from common.messages import Envelope, iso_z, utc_now
from server.state import ServerState, Client
from server.uploads import UploadStore
from server.rpc import Context, dispatch

HOST = "0.0.0.0"
PORT = 5050
UPLOAD_DIR = "uploads"


def iso_now():
    '''Return current UTC time in ISO format'''
    return iso_z(utc_now())


def envelope(etype: str, to: Optional[str], payload: Dict[str, Any], env_id: Optional[str] = None) -> Dict[str, Any]:
    return Envelope(type=etype, sender=None, to=to, ts=iso_now(), payload=payload, id=env_id).to_dict()


class ChatServer:
    ''' Threaded TCP server: one thread per connected client '''
    def __init__(self, ctx: Context, host: str = HOST, port: int = PORT):
        self.ctx = ctx
        self.host, self.port = host, port
        self.rsa_priv = rsa_generate()
        self.rsa_pub_pem = rsa_public_pem(self.rsa_priv)

    @property
    def state(self) -> ServerState:
        return self.ctx.state

    def send_error(self, conn: socket.socket, code: str, to: Optional[str] = None):
        send_json(conn, envelope("error", to, {"code": code}))

    def notify_changed(self, username: str, conversation_id: str):
        '''Tell the owner's client that a conversation's message list changed so it refetches'''
        c = self.state.get(username)
        if not c or not c.aes_key:
            return
        try:
            send_json(c.sock, envelope("changed", username, encrypt_body(c.aes_key, {"conversationId": conversation_id})))
        except OSError:
            pass  # the owner's own thread notices the dead socket

    def handshake(self, conn: socket.socket) -> Optional[str]:
        '''
        Run auth + key exchange. Returns the username, or None after the
        connection was rejected (the error envelope has already been sent).
        '''
        env = recv_json(conn)
        if env.get("type") != "auth":
            self.send_error(conn, "EXPECT_AUTH")
            return None

        username = str((env.get("payload") or {}).get("username") or "").strip()
        if not username:
            self.send_error(conn, "EXPECT_AUTH")
            return None
        print(f"[SERVER DEBUG] User {username} connecting")

        if not self.state.add_client(Client(username=username, sock=conn)):
            self.send_error(conn, "DUPLICATE_USERNAME")
            return None

        try:
            aes = self.exchange_key(conn, username)
        except Exception:
            self.state.remove(username)
            raise
        if aes is None:
            self.state.remove(username)
            return None

        c = self.state.get(username)
        if c is not None:
            c.aes_key = aes
        return username

    def exchange_key(self, conn: socket.socket, username: str) -> Optional[bytes]:
        '''Send the RSA public key and receive the wrapped AES session key'''
        send_json(conn, envelope("key", username, {"server_pub_pem": self.rsa_pub_pem}))

        env = recv_json(conn)
        if env.get("type") != "key" or "wrapped" not in (env.get("payload") or {}):
            self.send_error(conn, "EXPECT_AES_KEY", username)
            return None
        try:
            return rsa_unwrap_key(self.rsa_priv, env["payload"]["wrapped"])
        except CryptoError:
            self.send_error(conn, "BAD_AES_KEY", username)
            return None

    def handle_client(self, conn: socket.socket, addr):
        ''' This function serves one client connection until it leaves or drops
            Inputs:
            - conn: socket object representing the client connection
            - addr: address of the connected client
        '''
        username = None
        try:
            username = self.handshake(conn)
            if username is None:
                return
            key = self.state.get(username).aes_key
            send_json(conn, envelope("system", username, encrypt_body(key, {"text": f"Signed in as {username}."})))

            while True:
                env = recv_json(conn)
                etype = env.get("type")
                if etype == "rpc":
                    self.handle_rpc(conn, username, key, env)
                elif etype == "system" and (env.get("payload") or {}).get("event") == "leave":
                    break
                else:
                    self.send_error(conn, "UNKNOWN_TYPE", username)

        except (ConnectionError, ProtocolError) as e:
            print(f"[SERVER DEBUG] Connection {addr} closed: {e}")
        except Exception:
            # print for server operator
            traceback.print_exc()
        finally:
            if username:
                self.state.remove(username)
                print(f"[SERVER DEBUG] User {username} left")
            forget(conn)
            try:
                conn.close()
            except OSError:
                pass

    def handle_rpc(self, conn: socket.socket, username: str, key: bytes, env: Dict[str, Any]):
        try:
            body = decrypt_body(key, env.get("payload") or {})
            if not isinstance(body, dict):
                raise CryptoError("request body is not an object")
        except CryptoError:
            reply = {"ok": False, "error": "Cannot decrypt request"}
            changed = []
        else:
            reply, changed = dispatch(self.ctx, username, body.get("method", ""), body.get("params") or {})
        send_json(conn, envelope("result", username, encrypt_body(key, reply), env.get("id")))
        for cid in changed:
            self.notify_changed(username, cid)

    def serve_forever(self):
        print(f"Server listening on {self.host}:{self.port}")
        with socket.create_server((self.host, self.port)) as srv:
            while True:
                conn, addr = srv.accept()
                conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
                threading.Thread(target=self.handle_client, args=(conn, addr), daemon=True).start()


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--host", default=HOST, help="Interface to bind")
    ap.add_argument("--port", type=int, default=PORT, help="TCP port")
    ap.add_argument("--upload-dir", default=UPLOAD_DIR, help="Where uploaded files are stored")
    args = ap.parse_args()

    ctx = Context(state=ServerState(), uploads=UploadStore(args.upload_dir))
    ChatServer(ctx, args.host, args.port).serve_forever()


if __name__ == "__main__":
    main()
