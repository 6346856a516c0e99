import os
import re
import uuid
from typing import Optional

from common.messages import UploadedFile
from server.state import RpcFailure

URL_PREFIX = "/uploads/"


def safe_segment(value: Optional[str]) -> str:
    ''' Reduce a conversation id to a directory name; empty results become "general" '''
    cleaned = re.sub(r"[^a-zA-Z0-9_-]", "", value or "")
    return cleaned or "general"


def safe_name(name: str) -> str:
    ''' Replace anything but letters, digits, ".", "_" and "-" with "_" '''
    cleaned = re.sub(r"[^a-zA-Z0-9._-]", "_", name or "")
    return cleaned or "file"


class UploadStore:
    '''
    Files uploaded by clients, kept on local disk under
    <root>/<conversation>/<base>-<random><ext> and addressed by
    "/uploads/<conversation>/<filename>" URLs.
    '''
    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    def save(self, conversation_id: Optional[str], name: str, mime_type: str, data: bytes) -> UploadedFile:
        folder = safe_segment(conversation_id)
        directory = os.path.join(self.root, folder)
        os.makedirs(directory, exist_ok=True)

        original = safe_name(name)
        base, ext = os.path.splitext(original)
        filename = f"{base or 'file'}-{uuid.uuid4().hex}{ext}"
        with open(os.path.join(directory, filename), "wb") as f:
            f.write(data)

        return UploadedFile(url=f"{URL_PREFIX}{folder}/{filename}", name=name,
                            type=mime_type, size=len(data))

    def path_for(self, url: str) -> str:
        '''
        Map an upload URL back to a file path.
        Raises RpcFailure for URLs outside the upload root.
        '''
        if not url.startswith(URL_PREFIX):
            raise RpcFailure(f"Failed to fetch {url}")
        path = os.path.abspath(os.path.join(self.root, url[len(URL_PREFIX):]))
        if os.path.commonpath([self.root, path]) != self.root or path == self.root:
            raise RpcFailure(f"Failed to fetch {url}")
        return path

    def read(self, url: str) -> bytes:
        path = self.path_for(url)
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise RpcFailure(f"Failed to fetch {url}") from e
