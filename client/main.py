"""
Client entry point: ask for a username, connect, then open the chat window.
"""
import argparse
from typing import Optional

from .net import NetClient, DuplicateUsernameError
from .ui import ChatUI
from .login import show_login

HOST = "127.0.0.1"
PORT = 5050


def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Chatroom desktop client")
    ap.add_argument("--host", default=HOST, help="Server host address")
    ap.add_argument("--port", type=int, default=PORT, help="Server port")
    return ap.parse_args(argv)


def login_and_connect(host: str, port: int) -> Optional[NetClient]:
    '''
    Keep showing the login window until a connection succeeds.
    A rejected or unreachable login re-opens the window with the reason.
    Returns None when the user closes the window.
    '''
    error_msg = None
    while True:
        username = show_login(error_message=error_msg)
        if username is None:
            return None

        # no notice handler yet: notices wait in the backlog until the UI attaches
        net = NetClient(host, port, username)
        try:
            net.connect()
            return net
        except DuplicateUsernameError:
            error_msg = "Username already exists. Please try another one."
        except RuntimeError as e:
            error_msg = str(e)
        except OSError as e:
            error_msg = f"Cannot connect to {host}:{port} ({e})"


def main(argv=None):
    args = parse_args(argv)
    net = login_and_connect(args.host, args.port)
    if net is None:
        print("Login cancelled. Exiting program.")
        return
    print(f"✓ Connected as user: {net.username}")

    ui = ChatUI(net.username, net)
    ui.protocol("WM_DELETE_WINDOW", lambda: (net.close(), ui.destroy()))
    ui.mainloop()


if __name__ == "__main__":
    main()
