"""
Bulk image download: fetch the selected images in parallel, then pack
them into one store-only ZIP archive.
"""
import datetime
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple

from common.messages import Message, MessageType
from common.naming import make_unique_name, fallback_image_name, archive_filename
from common.zipper import ZipEntry, create_zip

# fetch(url, on_ok(bytes), on_error(exc)): starts one download and returns at once
FetchFn = Callable[[str, Callable[[bytes], None], Callable[[BaseException], None]], None]


class ArchiveFetchError(Exception):
    """Raised (and reported) when one of the selected images cannot be downloaded."""


def selected_images(visible: Iterable[Message], selected_ids: Set[str]) -> List[Message]:
    ''' Selected IMAGE messages in view order '''
    return [m for m in visible if m.id in selected_ids and m.type == MessageType.IMAGE]


def single_image_name(message: Message) -> str:
    return message.original_name or fallback_image_name(0, message.mime_type)


def build_archive(messages: Sequence[Message], payloads: Sequence[bytes],
                  now: Optional[datetime.datetime] = None) -> Tuple[str, bytes]:
    '''
    Pack fetched images into a ZIP archive.
    Input:
        - messages: the selected image messages, in selection order
        - payloads: raw bytes for each message, same order
        - now: timestamp used for the archive file name
    Output: (suggested file name, archive bytes)
    '''
    if len(messages) != len(payloads):
        raise ValueError("messages and payloads differ in length")
    used = {}
    entries = []
    for index, (message, data) in enumerate(zip(messages, payloads)):
        base = message.original_name or fallback_image_name(index, message.mime_type)
        entries.append(ZipEntry(name=make_unique_name(base, used), data=data))
    return archive_filename(now), create_zip(entries)


class ImageBatchDownload:
    '''
    Fire one fetch per image at once and collect the results by position.

    Finishes exactly once: on_done(payloads) with bytes in selection order
    when every fetch succeeded, or on_error(exc) on the first failure.
    Results arriving after that are dropped. Callbacks run on whichever
    thread the fetch callbacks arrive on; the caller marshals to the UI.
    '''
    def __init__(self, messages: Sequence[Message], fetch: FetchFn,
                 on_done: Callable[[List[bytes]], None],
                 on_error: Callable[[BaseException], None]):
        self.messages = list(messages)
        self._fetch = fetch
        self._on_done = on_done
        self._on_error = on_error
        self._results: List[Optional[bytes]] = [None] * len(self.messages)
        self._remaining = len(self.messages)
        self.finished = False

    def start(self):
        if not self.messages:
            self._finish_ok()
            return
        for index, message in enumerate(self.messages):
            self._fetch(message.content,
                        lambda data, i=index: self._resolved(i, data),
                        lambda exc, url=message.content: self._failed(url, exc))

    def _resolved(self, index: int, data: bytes):
        if self.finished or self._results[index] is not None:
            return
        self._results[index] = bytes(data)
        self._remaining -= 1
        if self._remaining == 0:
            self._finish_ok()

    def _failed(self, url: str, exc: BaseException):
        if self.finished:
            return
        self.finished = True
        self._results = []
        err = exc if isinstance(exc, ArchiveFetchError) else ArchiveFetchError(f"Failed to fetch {url}: {exc}")
        self._on_error(err)

    def _finish_ok(self):
        self.finished = True
        self._on_done(list(self._results))
