# problems.py
import enum
import logging
import random
import time
from dataclasses import dataclass

from errors import CodeforcesError, PoolUnavailableError

log = logging.getLogger(__name__)

# Difficulty band for verification problems (inclusive).
MIN_RATING = 1500
MAX_RATING = 2500
CACHE_TTL = 3600  # seconds


def problem_url(contest_id: int, index: str) -> str:
    return f"https://codeforces.com/problemset/problem/{contest_id}/{index}"


def in_band(problem) -> bool:
    return problem.rating is not None and MIN_RATING <= problem.rating <= MAX_RATING


class PoolState(enum.Enum):
    EMPTY = "empty"
    FRESH = "fresh"
    STALE = "stale"


class ProblemPool:
    """
    Process-wide snapshot of the Codeforces problemset, filtered to the
    verification band. A stale snapshot is still served when a refresh fails;
    with no snapshot at all the fetch error propagates.
    """

    def __init__(self, client, ttl: float = CACHE_TTL, clock=time.monotonic):
        self.client = client
        self.ttl = ttl
        self._clock = clock
        self._problems = None
        self._fetched_at = None

    def state(self, now: float | None = None) -> PoolState:
        if self._problems is None:
            return PoolState.EMPTY
        if now is None:
            now = self._clock()
        if now - self._fetched_at < self.ttl:
            return PoolState.FRESH
        return PoolState.STALE

    async def get(self):
        now = self._clock()
        state = self.state(now)
        if state is PoolState.FRESH:
            return self._problems

        try:
            problems = await self.client.fetch_problemset()
        except CodeforcesError as e:
            if state is PoolState.STALE:
                log.warning("Problemset refresh failed (%s), using stale pool of %d problems", e, len(self._problems))
                return self._problems
            raise

        self._problems = [p for p in problems if in_band(p)]
        self._fetched_at = now
        log.info("Problem pool refreshed: %d problems rated %d-%d", len(self._problems), MIN_RATING, MAX_RATING)
        return self._problems


@dataclass(frozen=True)
class Challenge:
    contest_id: int
    index: str
    name: str
    rating: int

    @property
    def problem_id(self) -> str:
        return f"{self.contest_id}{self.index.upper()}"

    @property
    def url(self) -> str:
        return problem_url(self.contest_id, self.index)


class ChallengeIssuer:
    """Picks the problem a user must submit a Compilation Error to. Has no side effects."""

    def __init__(self, pool: ProblemPool, rng: random.Random | None = None):
        self.pool = pool
        self._rng = rng or random.Random()

    async def issue(self) -> Challenge:
        try:
            problems = await self.pool.get()
        except CodeforcesError as e:
            raise PoolUnavailableError(f"Could not load Codeforces problems: {e}") from e
        if not problems:
            raise PoolUnavailableError()

        p = self._rng.choice(problems)
        return Challenge(contest_id=p.contest_id, index=p.index, name=p.name, rating=p.rating)
