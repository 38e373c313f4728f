from collections import deque
from datetime import datetime
from itertools import islice
from typing import Deque, List, NamedTuple, Tuple

from engine.messages import Message

DEFAULT_RETAINED = 10000


class LoggedMessage(NamedTuple):
    ts: datetime
    message: Message


class EventLog:
    """Log of delivered messages, polled by offset.

    Only the newest ``maxlen`` messages are kept. Offsets keep counting from
    the first message ever appended, so a poller that falls behind skips to
    the oldest retained message.
    """

    def __init__(self, maxlen: int = DEFAULT_RETAINED):
        self._log: Deque[LoggedMessage] = deque(maxlen=maxlen)
        self._base = 0  # offset of self._log[0]

    def __len__(self) -> int:
        return len(self._log)

    @property
    def first_offset(self) -> int:
        return self._base

    @property
    def next_offset(self) -> int:
        return self._base + len(self._log)

    def append_many(self, ts: datetime, msgs: List[Message]) -> Tuple[int, int]:
        """Append messages and return (start_offset, end_offset)."""
        start = self.next_offset
        for m in msgs:
            if len(self._log) == self._log.maxlen:
                self._base += 1
            self._log.append(LoggedMessage(ts, m))
        return start, self.next_offset - 1

    def since(self, offset: int, limit: int = 1000) -> Tuple[List[LoggedMessage], int]:
        """Return messages starting from offset, up to limit."""
        offset = max(self._base, offset)
        i = offset - self._base
        chunk = list(islice(self._log, i, i + limit))
        return chunk, offset + len(chunk)
