"""Chat command grammar.

    blue | red                          join a side
    -switch blue|red                    switch sides (from spectators)
    -lives                              show remaining lives
    -admin help
    -admin reduce-inventory <objective> <amount>
    -admin logistics-tick-now
    -admin logistics-deliver-now
    -admin tim <mark text> [size]

Keywords are case insensitive. Chat that does not start with ``-`` and is
not a side name is ordinary chat and parses to None.
"""
from dataclasses import dataclass
from typing import Optional, Union

from .model import Side

ADMIN_HELP = (
    "reduce-inventory <objective> <amount>, logistics-tick-now, "
    "logistics-deliver-now, tim <key> [size]"
)
DEFAULT_TIM_SIZE = 3000


class CommandParseError(Exception):
    def __init__(self, message: str, usage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.usage = usage

    def __str__(self) -> str:
        if self.usage:
            return f"{self.message}, usage: {self.usage}"
        return self.message


@dataclass(frozen=True)
class JoinSide:
    side: Side


@dataclass(frozen=True)
class SwitchSide:
    side: Side


@dataclass(frozen=True)
class Lives:
    pass


@dataclass(frozen=True)
class AdminHelp:
    pass


@dataclass(frozen=True)
class ReduceInventory:
    objective: str
    amount: int


@dataclass(frozen=True)
class LogisticsTickNow:
    pass


@dataclass(frozen=True)
class LogisticsDeliverNow:
    pass


@dataclass(frozen=True)
class Tim:
    key: str
    size: int = DEFAULT_TIM_SIZE


AdminCommand = Union[AdminHelp, ReduceInventory, LogisticsTickNow, LogisticsDeliverNow, Tim]


@dataclass(frozen=True)
class Admin:
    cmd: AdminCommand


Command = Union[JoinSide, SwitchSide, Lives, Admin]


def _side(word: str, usage: str) -> Side:
    w = word.strip().lower()
    if w not in ("blue", "red"):
        raise CommandParseError(f"side must be blue or red, not {word.strip()!r}", usage)
    return Side.parse(w)


def parse_admin(s: str) -> AdminCommand:
    """Parse the text after ``-admin``."""
    s = s.strip()
    word, _, rest = s.partition(" ")
    word = word.lower()
    rest = rest.strip()
    if word == "help" and not rest:
        return AdminHelp()
    if word == "reduce-inventory":
        usage = "-admin reduce-inventory <objective> <amount>"
        name, _, amount = rest.rpartition(" ")
        if not name.strip():
            raise CommandParseError("missing objective or amount", usage)
        try:
            n = int(amount)
        except ValueError:
            raise CommandParseError(f"amount must be a number, not {amount!r}", usage) from None
        if not 0 <= n <= 255:
            raise CommandParseError(f"amount must be between 0 and 255, not {n}", usage)
        return ReduceInventory(objective=name.strip(), amount=n)
    if word == "logistics-tick-now" and not rest:
        return LogisticsTickNow()
    if word == "logistics-deliver-now" and not rest:
        return LogisticsDeliverNow()
    if word == "tim":
        usage = "-admin tim <key> [size]"
        if not rest:
            raise CommandParseError("missing mark key", usage)
        key, _, size = rest.partition(" ")
        if not size.strip():
            return Tim(key=key)
        try:
            return Tim(key=key, size=int(size))
        except ValueError:
            raise CommandParseError(f"size must be a number, not {size.strip()!r}", usage) from None
    raise CommandParseError(f"unknown admin command {s!r}", ADMIN_HELP)


def parse_chat(text: str) -> Optional[Command]:
    """Parse one chat line. None means ordinary chat."""
    t = text.strip()
    head, _, rest = t.partition(" ")
    head = head.lower()
    if head in ("blue", "red") and not rest.strip():
        return JoinSide(Side.parse(head))
    if not t.startswith("-"):
        return None
    if head == "-switch":
        return SwitchSide(_side(rest, "-switch blue|red"))
    if head == "-lives" and not rest.strip():
        return Lives()
    if head == "-admin":
        return Admin(parse_admin(rest))
    raise CommandParseError(f"unknown command {head!r}", "blue, red, -switch blue|red, -lives")
