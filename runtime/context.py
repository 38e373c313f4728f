from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from engine.capture import CaptureTracker
from engine.commands import AdminCommand
from engine.lives import FlightTracker
from engine.logistics import LogisticsEngine
from engine.messages import MessageQueue
from engine.sensors import Ewr
from engine.store import MissionStore
from engine.world import MissionError


class MissionNotRunning(MissionError):
    pass


@dataclass
class PlayerInfo:
    name: str
    ucid: str


@dataclass
class MissionContext:
    """All mutable mission state, owned by the runner and lent to each call."""
    loaded: bool = False
    store: Optional[MissionStore] = None
    snapshot_path: Optional[Path] = None
    msgs: MessageQueue = field(default_factory=MessageQueue)
    admin_commands: List[Tuple[int, AdminCommand]] = field(default_factory=list)
    info_by_player_id: Dict[int, PlayerInfo] = field(default_factory=dict)
    id_by_ucid: Dict[str, int] = field(default_factory=dict)
    flights: FlightTracker = field(default_factory=FlightTracker)
    capture: CaptureTracker = field(default_factory=CaptureTracker)
    logistics: LogisticsEngine = field(default_factory=LogisticsEngine)
    ewr: Ewr = field(default_factory=Ewr)
    last_slow_timed_events: Optional[datetime] = None
    last_perf_log: Optional[datetime] = None

    @property
    def db(self) -> MissionStore:
        if self.store is None:
            raise MissionNotRunning("the mission is not running yet")
        return self.store

    def player_info(self, player_id: int) -> PlayerInfo:
        try:
            return self.info_by_player_id[player_id]
        except KeyError:
            raise MissionError(f"missing info for player {player_id}") from None
