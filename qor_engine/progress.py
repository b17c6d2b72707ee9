"""Progress reporting for the long-running resolution loops."""

import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]


class Progress:
    """
    Counts work done for one stage. Logs every ``every`` items (and at the
    end) and forwards each step to an optional ``callback(stage, done, total)``.
    """

    def __init__(self, stage: str, total: int, every: int = 10000,
                 callback: Optional[ProgressCallback] = None):
        self.stage = stage
        self.total = total
        self.every = max(int(every), 1)
        self.callback = callback
        self.done = 0
        self._next_log = self.every

    def advance(self, n: int = 1) -> None:
        self.done = min(self.done + n, self.total)
        if self.callback is not None:
            self.callback(self.stage, self.done, self.total)
        if self.done >= self._next_log or self.done == self.total:
            logger.info(f"{self.stage}: {self.done}/{self.total}")
            while self._next_log <= self.done:
                self._next_log += self.every
