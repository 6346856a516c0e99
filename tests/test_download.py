"""
Tests for bulk image download: parallel fetch coordination and the
archive built from the results.
"""

import datetime
import io
import zipfile

import pytest

from client.download import (
    ArchiveFetchError,
    ImageBatchDownload,
    build_archive,
    selected_images,
    single_image_name,
)
from common.crc32 import crc32
from common.messages import Message, MessageType

T0 = datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)


def image(mid, url, name=None, mime="image/png"):
    return Message(id=mid, conversation_id="c1", type=MessageType.IMAGE, content=url,
                   created_at=T0, original_name=name, mime_type=mime)


class ManualFetch:
    """Fetch double whose requests are answered by the test in any order."""

    def __init__(self):
        self.requests = []

    def __call__(self, url, on_ok, on_error):
        self.requests.append((url, on_ok, on_error))

    def ok(self, index, data):
        self.requests[index][1](data)

    def fail(self, index, exc):
        self.requests[index][2](exc)


@pytest.fixture
def fetch():
    return ManualFetch()


@pytest.fixture
def outcome():
    return {"done": [], "error": []}


def start(messages, fetch, outcome):
    job = ImageBatchDownload(messages, fetch,
                             on_done=outcome["done"].append,
                             on_error=outcome["error"].append)
    job.start()
    return job


class TestImageBatchDownload:
    """Parallel fetch coordination."""

    def test_all_requests_start_at_once(self, fetch, outcome):
        """Every fetch is issued before any completes."""
        msgs = [image(f"m{i}", f"/uploads/c1/{i}.png") for i in range(3)]
        start(msgs, fetch, outcome)
        assert [url for url, _, _ in fetch.requests] == [m.content for m in msgs]
        assert outcome == {"done": [], "error": []}

    def test_results_keep_selection_order(self, fetch, outcome):
        """Out-of-order completions are reassembled by position."""
        msgs = [image(f"m{i}", f"/u/{i}") for i in range(3)]
        job = start(msgs, fetch, outcome)
        fetch.ok(2, b"two")
        fetch.ok(0, b"zero")
        assert not job.finished
        fetch.ok(1, b"one")
        assert outcome["done"] == [[b"zero", b"one", b"two"]]
        assert outcome["error"] == []
        assert job.finished

    def test_first_failure_aborts_once(self, fetch, outcome):
        """One failure reports a single error naming the URL."""
        msgs = [image(f"m{i}", f"/u/{i}") for i in range(3)]
        start(msgs, fetch, outcome)
        fetch.ok(0, b"zero")
        fetch.fail(1, OSError("404"))
        fetch.fail(2, OSError("500"))
        fetch.ok(2, b"late")
        assert outcome["done"] == []
        assert len(outcome["error"]) == 1
        err = outcome["error"][0]
        assert isinstance(err, ArchiveFetchError)
        assert "/u/1" in str(err)

    def test_empty_selection_finishes_immediately(self, fetch, outcome):
        """No images means no requests and an empty result."""
        start([], fetch, outcome)
        assert fetch.requests == []
        assert outcome["done"] == [[]]

    def test_synchronous_fetch(self, outcome):
        """A fetch that answers inline still completes exactly once."""
        msgs = [image("a", "/u/a"), image("b", "/u/b")]
        start(msgs, lambda url, ok, err: ok(url.encode()), outcome)
        assert outcome["done"] == [[b"/u/a", b"/u/b"]]


class TestBuildArchive:
    """Archive assembly."""

    def test_duplicate_names_are_renamed(self, png_bytes):
        """Repeated original names get numbered suffixes; CRCs match the data."""
        msgs = [image("1", "/u/1", "cat.png"), image("2", "/u/2", "cat.png"),
                image("3", "/u/3", "dog.jpg", mime="image/jpeg")]
        payloads = [png_bytes, b"second cat", b"\xff\xd8dog"]
        name, blob = build_archive(msgs, payloads, now=T0)
        assert name == "images-202405011200.zip"
        with zipfile.ZipFile(io.BytesIO(blob)) as zf:
            infos = zf.infolist()
            assert [i.filename for i in infos] == ["cat.png", "cat-2.png", "dog.jpg"]
            for info, data in zip(infos, payloads):
                assert zf.read(info) == data
                assert info.CRC == crc32(data)
                assert info.compress_type == zipfile.ZIP_STORED

    def test_missing_names_fall_back_by_position(self):
        """Images without a name are named from their 1-based position and MIME type."""
        msgs = [image("1", "/u/1", None, mime="image/jpeg"), image("2", "/u/2", None, mime=None)]
        _, blob = build_archive(msgs, [b"a", b"b"], now=T0)
        with zipfile.ZipFile(io.BytesIO(blob)) as zf:
            assert zf.namelist() == ["image-1.jpg", "image-2.img"]

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            build_archive([image("1", "/u/1", "a.png")], [], now=T0)


def test_selected_images_filters_and_keeps_order():
    """Only selected image messages are taken, in view order."""
    text = Message(id="t", conversation_id="c1", type=MessageType.TEXT, content="hi", created_at=T0)
    a, b = image("a", "/u/a"), image("b", "/u/b")
    assert selected_images([b, text, a], {"a", "b", "t"}) == [b, a]


def test_single_image_name():
    assert single_image_name(image("a", "/u/a", "x.gif")) == "x.gif"
    assert single_image_name(image("a", "/u/a", None, mime="image/webp")) == "image-1.webp"
