"""
Engine events. Delivery (Telegram, push, ...) subscribes here; the engine
never depends on delivery succeeding.
"""
import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Set, Tuple, Type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchFound:
    match_id: int
    participants: Tuple[int, int]


@dataclass(frozen=True)
class WaitTimedOut:
    user_id: int


@dataclass(frozen=True)
class MatchEnded:
    match_id: int
    participants: Tuple[int, int]


Handler = Callable[[object], Awaitable[None]]


class EventBus:
    """
    Fire-and-forget dispatch. `emit` schedules each handler as its own
    task and returns at once; `join` waits for deliveries in flight.
    """

    def __init__(self) -> None:
        self._handlers: Dict[Type, List[Handler]] = defaultdict(list)
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, event_type: Type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    async def emit(self, event) -> None:
        for handler in list(self._handlers[type(event)]):
            task = asyncio.create_task(self._deliver(handler, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, handler: Handler, event) -> None:
        try:
            await handler(event)
        except Exception:
            logger.exception("Event handler %r failed for %r", handler, event)

    async def join(self) -> None:
        while self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
