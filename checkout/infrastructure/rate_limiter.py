import logging
import time
from collections import deque
from typing import Callable, Deque, Dict

from checkout.application.interfaces import RateLimiter

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter(RateLimiter):
    """Не больше max_requests запросов за window секунд на ключ.

    Состояние в памяти процесса: подходит для одного инстанса.
    Ключи с истекшим окном удаляются раз в window секунд.
    """

    def __init__(self, max_requests: int, window: float, clock: Callable[[], float] = time.monotonic):
        self._max_requests = max_requests
        self._window = window
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()

    def allow(self, key: str) -> bool:
        now = self._clock()
        self._sweep(now)

        hits = self._hits.setdefault(key, deque())
        while hits and hits[0] <= now - self._window:
            hits.popleft()

        if len(hits) >= self._max_requests:
            logger.warning(f"Превышен лимит запросов для {key}")
            return False

        hits.append(now)
        return True

    def tracked_keys(self) -> int:
        return len(self._hits)

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self._window:
            return
        expired = [key for key, hits in self._hits.items() if not hits or hits[-1] <= now - self._window]
        for key in expired:
            del self._hits[key]
        self._last_sweep = now
        if expired:
            logger.debug(f"Удалено {len(expired)} ключей с истекшим окном")
