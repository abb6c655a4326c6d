# session.py
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

DEFAULT_TIMEOUT_MINUTES = 10


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_time_left(seconds_left: float) -> str:
    if seconds_left < 0:
        seconds_left = 0
    mins = int(seconds_left) // 60
    secs = int(seconds_left) % 60
    return f"{mins}m {secs}s"


def session_key(discord_user_id: int, guild_id: int, username: str) -> tuple:
    return (discord_user_id, guild_id, username.lower())


@dataclass(frozen=True)
class VerificationSession:
    """
    One in-flight ownership challenge. Sessions are never edited: they are
    created, then deleted when verified, expired, or replaced by a newer
    session for the same (user, guild, username).
    """

    id: str
    discord_user_id: int
    guild_id: int
    username: str
    contest_id: int
    problem_index: str
    problem_name: str
    problem_url: str
    started_at: datetime
    expires_at: datetime

    @classmethod
    def start(cls, discord_user_id: int, guild_id: int, username: str, challenge,
              now: datetime | None = None, timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES):
        now = now or utcnow()
        return cls(
            id=str(uuid.uuid4()),
            discord_user_id=discord_user_id,
            guild_id=guild_id,
            username=username,
            contest_id=challenge.contest_id,
            problem_index=challenge.index.upper(),
            problem_name=challenge.name,
            problem_url=challenge.url,
            started_at=now,
            expires_at=now + timedelta(minutes=timeout_minutes),
        )

    @property
    def key(self) -> tuple:
        return session_key(self.discord_user_id, self.guild_id, self.username)

    @property
    def problem_id(self) -> str:
        return f"{self.contest_id}{self.problem_index}"

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def seconds_left(self, now: datetime) -> float:
        return (self.expires_at - now).total_seconds()

    def time_left(self, now: datetime) -> str:
        return format_time_left(self.seconds_left(now))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "discord_user_id": self.discord_user_id,
            "guild_id": self.guild_id,
            "username": self.username,
            "contest_id": self.contest_id,
            "problem_index": self.problem_index,
            "problem_name": self.problem_name,
            "problem_url": self.problem_url,
            "started_at": self.started_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict):
        return cls(
            id=data["id"],
            discord_user_id=int(data["discord_user_id"]),
            guild_id=int(data["guild_id"]),
            username=data["username"],
            contest_id=int(data["contest_id"]),
            problem_index=data["problem_index"],
            problem_name=data.get("problem_name", ""),
            problem_url=data["problem_url"],
            started_at=datetime.fromisoformat(data["started_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )
