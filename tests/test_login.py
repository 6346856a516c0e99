"""
Tests for login name validation.
"""

import pytest

pytest.importorskip("tkinter")

from client.login import MAX_NAME, validate_username  # noqa: E402


@pytest.mark.parametrize("name, error", [
    ("alice", None),
    ("  bob  ", None),
    ("", "Please enter a name."),
    ("   ", "Please enter a name."),
    ("a" * (MAX_NAME + 1), f"Name must be at most {MAX_NAME} characters."),
    ("john smith", "Name cannot contain spaces."),
])
def test_validate_username(name, error):
    assert validate_username(name) == error
