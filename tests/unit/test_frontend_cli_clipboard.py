"""Unit tests for the clipboard helpers."""

import pytest
from unittest.mock import MagicMock, patch

import pyperclip

from trezcrypt.frontend.cli import clipboard
from trezcrypt.frontend.cli.clipboard import ClipboardWatcher


@pytest.fixture
def fake_pyperclip():
    with patch("trezcrypt.frontend.cli.clipboard.pyperclip.copy") as mock_copy, \
            patch("trezcrypt.frontend.cli.clipboard.pyperclip.paste") as mock_paste:
        yield {"copy": mock_copy, "paste": mock_paste}


def test_copy_to_clipboard(fake_pyperclip):
    clipboard.copy_to_clipboard("hello")
    fake_pyperclip["copy"].assert_called_once_with("hello")


def test_paste_from_clipboard(fake_pyperclip):
    fake_pyperclip["paste"].return_value = "text"
    assert clipboard.paste_from_clipboard() == "text"


def test_paste_without_text_returns_none(fake_pyperclip):
    fake_pyperclip["paste"].side_effect = pyperclip.PyperclipException("target STRING not available")
    assert clipboard.paste_from_clipboard() is None


def test_paste_other_errors_propagate(fake_pyperclip):
    fake_pyperclip["paste"].side_effect = pyperclip.PyperclipException("no clipboard mechanism")
    with pytest.raises(pyperclip.PyperclipException):
        clipboard.paste_from_clipboard()


def test_next_clip_waits_for_change(fake_pyperclip):
    fake_pyperclip["paste"].side_effect = ["old", "old", "old", "new text"]
    sleep = MagicMock()
    watcher = ClipboardWatcher(poll_interval=0.5, sleep=sleep)

    assert watcher.next_clip() == "new text"
    assert sleep.call_count == 2
    sleep.assert_called_with(0.5)


def test_next_clip_from_empty_clipboard(fake_pyperclip):
    fake_pyperclip["paste"].side_effect = [None, "", "first"]
    watcher = ClipboardWatcher(sleep=MagicMock())
    assert watcher.next_clip() == "first"


def test_clear_captured_when_unchanged(fake_pyperclip):
    fake_pyperclip["paste"].side_effect = ["old", "secret", "secret"]
    watcher = ClipboardWatcher(sleep=MagicMock())
    watcher.next_clip()

    assert watcher.clear_captured() is True
    fake_pyperclip["copy"].assert_called_once_with("")


def test_clear_captured_leaves_newer_content(fake_pyperclip):
    fake_pyperclip["paste"].side_effect = ["old", "secret", "something else"]
    watcher = ClipboardWatcher(sleep=MagicMock())
    watcher.next_clip()

    assert watcher.clear_captured() is False
    fake_pyperclip["copy"].assert_not_called()


def test_clear_captured_without_capture(fake_pyperclip):
    assert ClipboardWatcher().clear_captured() is False
    fake_pyperclip["paste"].assert_not_called()
