from datetime import datetime
from typing import Dict, List, Tuple

from .messages import MessageQueue
from .model import Side
from .store import MissionStore

# consecutive capturable ticks before the advisory goes out
CAPTURABLE_ADVISE_TICKS = 10


class CaptureTracker:
    """Debounced capturable advisories and capture/threat announcements."""

    def __init__(self):
        self.capturable: Dict[str, int] = {}

    def progress(self, oid: str) -> int:
        return self.capturable.get(oid, 0)

    def advise_capturable(self, store: MissionStore, msgs: MessageQueue) -> List[str]:
        """Count ticks each objective has been capturable; announce on the threshold tick."""
        advised: List[str] = []
        cur = store.capturable_objectives()
        for oid in sorted(cur):
            n = self.capturable.get(oid, 0) + 1
            self.capturable[oid] = n
            if n == CAPTURABLE_ADVISE_TICKS:
                msgs.panel_to_all(30, False, f"{store.objective(oid).name} is now capturable")
                advised.append(oid)
        for oid in [o for o in self.capturable if o not in cur]:
            del self.capturable[oid]
        return advised

    def advise_captured(self, store: MissionStore, msgs: MessageQueue, now: datetime) -> List[Tuple[Side, str]]:
        captured = store.check_capture(now)
        for side, oid in captured:
            name = store.objective(oid).name
            msgs.panel_to_side(15, False, side, f"our forces have captured {name}")
            msgs.panel_to_side(15, False, side.opposite(), f"we have lost {name}")
            self.capturable.pop(oid, None)
        return captured

    def advise_threats(self, store: MissionStore, msgs: MessageQueue) -> Tuple[List[str], List[str]]:
        threatened, cleared = store.update_threats()
        for oid in threatened:
            obj = store.objective(oid)
            msgs.panel_to_side(10, False, obj.owner, f"enemies spotted near {obj.name}")
        for oid in cleared:
            obj = store.objective(oid)
            msgs.panel_to_side(10, False, obj.owner, f"{obj.name} is no longer threatened")
        return threatened, cleared
