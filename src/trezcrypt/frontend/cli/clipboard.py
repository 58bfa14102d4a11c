"""Clipboard utilities for the CLI frontend.

Uses pyperclip for cross-platform clipboard access.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import pyperclip


logger = logging.getLogger(__name__)


def copy_to_clipboard(text: str) -> None:
    """Copy text to the system clipboard.

    Args:
        text: The text to copy.

    Raises:
        pyperclip.PyperclipException: If clipboard access fails.
    """
    pyperclip.copy(text)


def paste_from_clipboard() -> Optional[str]:
    """Return the clipboard text, or None when the clipboard holds no text."""
    try:
        return pyperclip.paste()
    except pyperclip.PyperclipException as e:
        if "target STRING not available" in str(e):
            logger.warning("%s", e)
            return None
        raise


class ClipboardWatcher:
    """Wait for the user to copy something new, and clear it again afterwards."""

    def __init__(self, poll_interval: float = 0.3, sleep: Callable[[float], None] = time.sleep):
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._captured: Optional[str] = None

    def next_clip(self) -> str:
        """Block until the clipboard differs from its current contents and return it."""
        current = paste_from_clipboard() or ""
        while True:
            latest = paste_from_clipboard() or ""
            if latest != current:
                self._captured = latest
                return latest
            self._sleep(self.poll_interval)

    def clear_captured(self) -> bool:
        """Empty the clipboard if it still holds the captured text."""
        if self._captured is not None and paste_from_clipboard() == self._captured:
            copy_to_clipboard("")
            return True
        return False
