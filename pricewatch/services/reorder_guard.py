"""
Exclusive reorder flag.

While a favorites reorder gesture is in progress no request may be issued
and the auto-refresh countdown is paused. This is a flag, not a lock: the
single event loop is what makes reading it safe.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)


class ReorderGuard:
    """Mutual-exclusion flag for the reorder gesture."""

    def __init__(self):
        self.active = False

    def enter(self) -> None:
        if self.active:
            logger.debug("Reorder already active")
        self.active = True

    def exit(self) -> None:
        self.active = False

    @contextmanager
    def hold(self) -> Iterator["ReorderGuard"]:
        """Set the flag for the duration of the block; always cleared on exit."""
        self.enter()
        try:
            yield self
        finally:
            self.exit()
