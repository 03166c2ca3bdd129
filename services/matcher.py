"""
Pairing scheduler - scan, select, commit. NO SQL, pure business logic.

Each pass scores every unordered pair in a pool snapshot, so one pass costs
O(n^2) safety + score evaluations. That is fine for tens to low hundreds of
concurrent waiters; there is no interest bucketing.
"""
import asyncio
import itertools
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from config import settings
from db.matches import MatchRecord
from services.errors import (
    AlreadyMatched, InvariantViolation, LookupFailed, SafetyVeto, StaleEntry,
)
from services.lifecycle import MatchLifecycleManager
from services.pool import WaitingPool
from services.safety import SafetyFilter
from services.scoring import CompatibilityScorer, ScoreResult

logger = logging.getLogger(__name__)


class PassState:
    IDLE = "IDLE"
    SCANNING = "SCANNING"
    SELECTING = "SELECTING"
    COMMITTING = "COMMITTING"


@dataclass
class PassResult:
    scanned: int = 0
    permitted: int = 0
    match: Optional[MatchRecord] = None
    aborted: bool = False
    reason: Optional[str] = None


def selection_key(result: ScoreResult):
    """Highest score, then longest combined wait, then lowest id pair"""
    return (-result.score, result.combined_joined_at, result.pair)


def rank_candidates(results: List[ScoreResult]) -> List[ScoreResult]:
    return sorted(results, key=selection_key)


def _collect_commit(task: asyncio.Task):
    # A commit outliving its timed-out pass still has its outcome retrieved
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Commit finished with %r", task.exception())


class PairingScheduler:
    def __init__(
        self,
        pool: WaitingPool,
        safety: SafetyFilter,
        scorer: CompatibilityScorer,
        lifecycle: MatchLifecycleManager,
        interval_seconds: float = settings.PAIRING_INTERVAL_SECONDS,
        pass_timeout_seconds: float = settings.PASS_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.pool = pool
        self.safety = safety
        self.scorer = scorer
        self.lifecycle = lifecycle
        self.interval_seconds = interval_seconds
        self.pass_timeout_seconds = pass_timeout_seconds
        self.clock = clock

        self.state = PassState.IDLE
        self.halted = False
        self._pass_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._pass_lock.locked()

    async def trigger(self) -> Optional[PassResult]:
        """
        Run one pass. Returns None if a pass is already running (coalesced)
        or the scheduler has halted.
        """
        if self.halted:
            return None
        if self._pass_lock.locked():
            logger.debug("Pass already running, trigger coalesced")
            return None

        async with self._pass_lock:
            try:
                return await asyncio.wait_for(self._run_pass(), self.pass_timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning("Pairing pass exceeded %ss, aborted", self.pass_timeout_seconds)
                return PassResult(aborted=True, reason="timeout")
            except LookupFailed as e:
                logger.warning("Pairing pass aborted: %s (cause: %r)", e, e.__cause__)
                return PassResult(aborted=True, reason=str(e))
            except InvariantViolation:
                self.halted = True
                logger.critical("Invariant violated, scheduler halted", exc_info=True)
                raise
            finally:
                self.state = PassState.IDLE

    async def drain(self) -> List[MatchRecord]:
        """Repeat passes while each one produces a match"""
        created = []
        while True:
            result = await self.trigger()
            if result is None or result.match is None:
                return created
            created.append(result.match)

    async def _scan(self, now: datetime) -> Tuple[int, List[ScoreResult]]:
        self.state = PassState.SCANNING
        self.pool.verify()
        snapshot = self.pool.snapshot()

        suspended = await self.safety.suspended_among((e.user_id for e in snapshot), now)

        candidates = []
        for entry_a, entry_b in itertools.combinations(snapshot, 2):
            facts = await self.safety.facts(entry_a.user_id, entry_b.user_id, now, suspended)
            if not facts.permitted:
                logger.debug("Vetoed %s <-> %s: %r", entry_a.user_id, entry_b.user_id, facts)
                continue
            candidates.append(
                await self.scorer.evaluate(entry_a, entry_b, now, facts.recently_matched)
            )

        return len(snapshot), candidates

    async def _run_pass(self) -> PassResult:
        now = self.clock()
        scanned, candidates = await self._scan(now)
        result = PassResult(scanned=scanned, permitted=len(candidates))

        self.state = PassState.SELECTING
        for best in rank_candidates(candidates):
            user_a, user_b = best.entry_a.user_id, best.entry_b.user_id

            # Skip pairs already known to be stale from an earlier commit attempt
            if user_a not in self.pool or user_b not in self.pool:
                continue

            self.state = PassState.COMMITTING
            try:
                await self.safety.ensure_permitted(user_a, user_b)
                # Shielded so a pass timeout never interrupts a half-written commit
                commit = asyncio.ensure_future(self.lifecycle.commit_pair(user_a, user_b))
                commit.add_done_callback(_collect_commit)
                record = await asyncio.shield(commit)
            except SafetyVeto:
                logger.info("Pair %s <-> %s vetoed at commit", user_a, user_b)
                self.state = PassState.SELECTING
                continue
            except StaleEntry as e:
                logger.info("Pair %s <-> %s stale (user %s gone)", user_a, user_b, e.user_id)
                self.state = PassState.SELECTING
                continue
            except AlreadyMatched as e:
                logger.warning("Pair %s <-> %s skipped: user %s already matched",
                               user_a, user_b, e.user_id)
                self.state = PassState.SELECTING
                continue

            logger.info("Paired %s <-> %s with score %s", user_a, user_b, best.score)
            result.match = record
            break

        return result

    async def _loop(self):
        while True:
            try:
                await self.drain()
            except InvariantViolation:
                return
            except Exception:
                logger.exception("Pairing pass crashed")
            await asyncio.sleep(self.interval_seconds)

    def start(self):
        """Start periodic passes"""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())
            logger.info("Pairing scheduler started, every %ss", self.interval_seconds)

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
