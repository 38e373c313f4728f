from collections import deque
from typing import Callable, Deque, List, Tuple

from infra.logger import get_logger

from .model import SpawnRequest

log = get_logger(__name__)


class SpawnQueue:
    """FIFO of pending group spawns, drained a few entries per tick."""

    def __init__(self):
        self._q: Deque[SpawnRequest] = deque()

    def __len__(self) -> int:
        return len(self._q)

    def push(self, req: SpawnRequest) -> None:
        self._q.append(req)

    def pending(self) -> List[SpawnRequest]:
        return list(self._q)

    def process(self, spawn: Callable[[SpawnRequest], None], budget: int) -> Tuple[int, int]:
        """Spawn at most ``budget`` queued groups. Returns (spawned, failed).

        A failing entry is logged and dropped; it does not stop the rest of
        the batch.
        """
        spawned = failed = 0
        while self._q and spawned + failed < budget:
            req = self._q.popleft()
            try:
                spawn(req)
            except Exception as e:
                log.error("failed to spawn group %s for objective %s: %s", req.group, req.objective, e)
                failed += 1
                continue
            spawned += 1
        return spawned, failed
