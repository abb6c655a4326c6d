# cfapi.py
import asyncio
import logging
import time
from dataclasses import dataclass, field

import aiohttp

from errors import ApiTimeoutError, NotFoundError, TransportError, UpstreamError

log = logging.getLogger(__name__)

API_BASE = "https://codeforces.com/api"

# Global spacing between any two Codeforces API requests, in seconds.
MIN_INTERVAL = 0.25
REQUEST_TIMEOUT = 15.0
PROBLEMSET_TIMEOUT = 10.0

RANKS = (
    "newbie",
    "pupil",
    "specialist",
    "expert",
    "candidate master",
    "master",
    "international master",
    "grandmaster",
    "international grandmaster",
    "legendary grandmaster",
)


def normalize_rank(rank: str | None) -> str | None:
    if not rank:
        return None
    return rank.strip().lower()


@dataclass(frozen=True)
class UserInfo:
    handle: str
    rank: str = "unrated"
    rating: int = 0
    max_rank: str = "unrated"
    max_rating: int = 0
    avatar: str | None = None
    title_photo: str | None = None

    @classmethod
    def from_api(cls, user: dict) -> "UserInfo":
        return cls(
            handle=user["handle"],
            rank=user.get("rank") or "unrated",
            rating=user.get("rating") or 0,
            max_rank=user.get("maxRank") or "unrated",
            max_rating=user.get("maxRating") or 0,
            avatar=user.get("avatar"),
            title_photo=user.get("titlePhoto"),
        )


@dataclass(frozen=True)
class Submission:
    id: int
    contest_id: int | None
    problem_index: str
    problem_name: str
    verdict: str | None
    creation_time_seconds: int
    programming_language: str = ""

    @classmethod
    def from_api(cls, sub: dict) -> "Submission":
        prob = sub.get("problem", {})
        return cls(
            id=sub["id"],
            contest_id=prob.get("contestId"),
            problem_index=prob.get("index", ""),
            problem_name=prob.get("name", ""),
            # verdict is absent while the submission is still in queue
            verdict=sub.get("verdict"),
            creation_time_seconds=sub.get("creationTimeSeconds", 0),
            programming_language=sub.get("programmingLanguage", ""),
        )


@dataclass(frozen=True)
class Problem:
    contest_id: int
    index: str
    name: str
    rating: int | None = None
    tags: tuple = field(default_factory=tuple)

    @classmethod
    def from_api(cls, prob: dict) -> "Problem":
        return cls(
            contest_id=prob["contestId"],
            index=prob["index"],
            name=prob.get("name", ""),
            rating=prob.get("rating"),
            tags=tuple(prob.get("tags", [])),
        )


class RateGate:
    """Ensure spacing of `min_interval` seconds between calls passing through the gate."""

    def __init__(self, min_interval: float = MIN_INTERVAL, clock=time.monotonic, sleep=asyncio.sleep):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_call = None

    async def wait(self):
        # read-then-write of _last_call happens entirely under the lock
        async with self._lock:
            if self._last_call is not None:
                wait = self.min_interval - (self._clock() - self._last_call)
                if wait > 0:
                    await self._sleep(wait)
            self._last_call = self._clock()


class CodeforcesClient:
    """Read-only Codeforces API client. Every request goes through one shared RateGate."""

    def __init__(self, gate: RateGate | None = None, base_url: str = API_BASE):
        self.gate = gate or RateGate()
        self.base_url = base_url

    async def _fetch_json(self, url: str, params: dict, timeout: float):
        client_timeout = aiohttp.ClientTimeout(total=timeout)
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.get(url, params=params) as resp:
                try:
                    # FAILED answers come with a 400 status but still carry a JSON body
                    return await resp.json(content_type=None)
                except ValueError as e:
                    raise TransportError(f"Unreadable response from Codeforces (HTTP {resp.status})") from e

    async def _request(self, endpoint: str, params: dict | None = None, timeout: float = REQUEST_TIMEOUT):
        await self.gate.wait()
        url = f"{self.base_url}/{endpoint}"
        try:
            data = await self._fetch_json(url, params or {}, timeout)
        except asyncio.TimeoutError as e:
            raise ApiTimeoutError(endpoint, timeout) from e
        except aiohttp.ClientError as e:
            raise TransportError(f"Could not reach Codeforces: {e}") from e

        if not isinstance(data, dict):
            raise TransportError("Unexpected response shape from Codeforces")
        if data.get("status") != "OK" or "result" not in data:
            raise UpstreamError(data.get("comment") or "Codeforces API error")
        return data["result"]

    async def fetch_user_info(self, handle: str) -> UserInfo:
        handle = handle.strip()
        try:
            users = await self._request("user.info", {"handles": handle})
        except UpstreamError as e:
            if "not found" in e.comment.lower():
                raise NotFoundError(f'Codeforces user "{handle}" not found') from e
            raise
        if not users:
            raise NotFoundError(f'Codeforces user "{handle}" not found')
        return UserInfo.from_api(users[0])

    async def fetch_user_rank(self, handle: str) -> str:
        info = await self.fetch_user_info(handle)
        return normalize_rank(info.rank)

    async def fetch_recent_submissions(self, handle: str, count: int = 10) -> list[Submission]:
        """Most recent first, as Codeforces returns them."""
        result = await self._request("user.status", {"handle": handle.strip(), "from": 1, "count": count})
        return [Submission.from_api(sub) for sub in result]

    async def fetch_problemset(self) -> list[Problem]:
        result = await self._request("problemset.problems", timeout=PROBLEMSET_TIMEOUT)
        problems = []
        for prob in result.get("problems", []):
            if "contestId" not in prob:
                continue
            problems.append(Problem.from_api(prob))
        log.info("Fetched %d problems from Codeforces", len(problems))
        return problems
