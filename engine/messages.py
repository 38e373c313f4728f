from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional, Union

from infra.logger import get_logger

from .model import Side

log = get_logger(__name__)


@dataclass(frozen=True)
class Chat:
    """Chat line to one player, or to everyone when ``to`` is None."""
    to: Optional[int]
    text: str


@dataclass(frozen=True)
class PanelToAll:
    duration: int
    clear: bool
    text: str


@dataclass(frozen=True)
class PanelToSide:
    side: Side
    duration: int
    clear: bool
    text: str


@dataclass(frozen=True)
class PanelToUnit:
    unit: str
    duration: int
    clear: bool
    text: str


@dataclass(frozen=True)
class DeleteMark:
    id: int


Message = Union[Chat, PanelToAll, PanelToSide, PanelToUnit, DeleteMark]


class MessageQueue:
    """Outbound messages buffered until the tick's flush stage."""

    def __init__(self):
        self._q: Deque[Message] = deque()

    def __len__(self) -> int:
        return len(self._q)

    def chat(self, to: Optional[int], text: str) -> None:
        self._q.append(Chat(to, text))

    def panel_to_all(self, duration: int, clear: bool, text: str) -> None:
        self._q.append(PanelToAll(duration, clear, text))

    def panel_to_side(self, duration: int, clear: bool, side: Side, text: str) -> None:
        self._q.append(PanelToSide(side, duration, clear, text))

    def panel_to_unit(self, duration: int, clear: bool, unit: str, text: str) -> None:
        self._q.append(PanelToUnit(unit, duration, clear, text))

    def delete_mark(self, id: int) -> None:
        self._q.append(DeleteMark(id))

    def pending(self) -> List[Message]:
        return list(self._q)

    def process(self, deliver: Callable[[Message], None]) -> List[Message]:
        """Deliver everything queued, in order. Returns what was delivered."""
        sent: List[Message] = []
        while self._q:
            msg = self._q.popleft()
            try:
                deliver(msg)
            except Exception as e:
                log.error("failed to deliver message %r: %s", msg, e)
                continue
            sent.append(msg)
        return sent
