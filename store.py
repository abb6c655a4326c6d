# store.py
import dataclasses
import json
import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from cfapi import RANKS, normalize_rank
from errors import InvalidRankError, NotFoundError
from session import VerificationSession, session_key, utcnow

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuildConfig:
    guild_id: int
    verified_role_id: int | None = None
    # normalized rank label -> role id, only configured ranks present
    rank_role_map: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "guild_id": self.guild_id,
            "verified_role_id": self.verified_role_id,
            "rank_role_map": dict(self.rank_role_map),
        }

    @classmethod
    def from_dict(cls, data: dict):
        role_id = data.get("verified_role_id")
        return cls(
            guild_id=int(data["guild_id"]),
            verified_role_id=int(role_id) if role_id is not None else None,
            rank_role_map={rank: int(rid) for rank, rid in (data.get("rank_role_map") or {}).items()},
        )


@dataclass(frozen=True)
class LinkedAccount:
    id: str
    discord_user_id: int
    guild_id: int
    username: str
    verified: bool = True
    verified_at: datetime | None = None
    rank: str | None = None

    @property
    def key(self) -> tuple:
        return session_key(self.discord_user_id, self.guild_id, self.username)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "discord_user_id": self.discord_user_id,
            "guild_id": self.guild_id,
            "username": self.username,
            "verified": self.verified,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "rank": self.rank,
        }

    @classmethod
    def from_dict(cls, data: dict):
        verified_at = data.get("verified_at")
        return cls(
            id=data["id"],
            discord_user_id=int(data["discord_user_id"]),
            guild_id=int(data["guild_id"]),
            username=data["username"],
            verified=bool(data.get("verified", True)),
            verified_at=datetime.fromisoformat(verified_at) if verified_at else None,
            rank=data.get("rank"),
        )


class Store:
    """
    Guild configs, pending verification sessions and linked accounts, kept in
    memory and written to one JSON file after every change. With no path the
    store lives in memory only.

    Every method is synchronous, so a single call (delete-then-insert of a
    session, upsert of an account) cannot interleave with another coroutine.
    """

    def __init__(self, path: str | None = None):
        self.path = path
        self.guild_configs: dict[int, GuildConfig] = {}
        self.sessions: dict[str, VerificationSession] = {}
        self.accounts: dict[str, LinkedAccount] = {}
        if path and os.path.exists(path):
            self._load()

    def _load(self):
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            configs = [GuildConfig.from_dict(c) for c in data.get("guild_config", [])]
            sessions = [VerificationSession.from_dict(s) for s in data.get("pending_verifications", [])]
            accounts = [LinkedAccount.from_dict(a) for a in data.get("linked_accounts", [])]
        except (ValueError, KeyError, TypeError) as e:
            log.warning("Could not read %s (%s), starting with an empty store", self.path, e)
            return
        self.guild_configs = {c.guild_id: c for c in configs}
        self.sessions = {s.id: s for s in sessions}
        self.accounts = {a.id: a for a in accounts}
        log.info(
            "Loaded %d guild config(s), %d pending verification(s), %d linked account(s)",
            len(self.guild_configs), len(self.sessions), len(self.accounts),
        )

    def _save(self):
        if not self.path:
            return
        data = {
            "guild_config": [c.to_dict() for c in self.guild_configs.values()],
            "pending_verifications": [s.to_dict() for s in self.sessions.values()],
            "linked_accounts": [a.to_dict() for a in self.accounts.values()],
        }
        with open(self.path, "w") as f:
            json.dump(data, f, indent=2)

    # --- guild config ---

    def get_guild_config(self, guild_id: int) -> GuildConfig | None:
        return self.guild_configs.get(guild_id)

    def set_verified_role(self, guild_id: int, role_id: int) -> GuildConfig:
        config = self.guild_configs.get(guild_id) or GuildConfig(guild_id=guild_id)
        config = dataclasses.replace(config, verified_role_id=role_id)
        self.guild_configs[guild_id] = config
        self._save()
        return config

    def set_rank_role(self, guild_id: int, rank: str, role_id: int) -> GuildConfig:
        normalized = normalize_rank(rank)
        if normalized not in RANKS:
            raise InvalidRankError(rank)
        config = self.guild_configs.get(guild_id) or GuildConfig(guild_id=guild_id)
        rank_role_map = {**config.rank_role_map, normalized: role_id}
        config = dataclasses.replace(config, rank_role_map=rank_role_map)
        self.guild_configs[guild_id] = config
        self._save()
        return config

    # --- pending verifications ---

    def create_pending_verification(self, session: VerificationSession) -> VerificationSession:
        """Insert `session`, replacing any session with the same (user, guild, username)."""
        superseded = [sid for sid, s in self.sessions.items() if s.key == session.key]
        for sid in superseded:
            del self.sessions[sid]
        if superseded:
            log.info("Replaced %d pending verification(s) for %s", len(superseded), session.username)
        self.sessions[session.id] = session
        self._save()
        return session

    def get_pending_verifications(self, discord_user_id: int, guild_id: int, now: datetime | None = None):
        """Live (not yet expired) sessions for a user in a guild, oldest first."""
        now = now or utcnow()
        live = [
            s for s in self.sessions.values()
            if s.discord_user_id == discord_user_id and s.guild_id == guild_id and s.expires_at > now
        ]
        return sorted(live, key=lambda s: s.started_at)

    def delete_pending_verification(self, session_id: str) -> bool:
        if self.sessions.pop(session_id, None) is None:
            return False
        self._save()
        return True

    def cleanup_expired_verifications(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        expired = [sid for sid, s in self.sessions.items() if s.expires_at < now]
        for sid in expired:
            del self.sessions[sid]
        if expired:
            self._save()
        return len(expired)

    # --- linked accounts ---

    def create_linked_account(self, discord_user_id: int, guild_id: int, username: str,
                              rank: str | None, now: datetime | None = None) -> LinkedAccount:
        key = session_key(discord_user_id, guild_id, username)
        existing = next((a for a in self.accounts.values() if a.key == key), None)
        account = LinkedAccount(
            id=existing.id if existing else str(uuid.uuid4()),
            discord_user_id=discord_user_id,
            guild_id=guild_id,
            username=username,
            verified=True,
            verified_at=now or utcnow(),
            rank=normalize_rank(rank),
        )
        self.accounts[account.id] = account
        try:
            self._save()
        except OSError:
            if existing:
                self.accounts[existing.id] = existing
            else:
                del self.accounts[account.id]
            raise
        return account

    def get_linked_accounts(self, discord_user_id: int, guild_id: int) -> list[LinkedAccount]:
        return [
            a for a in self.accounts.values()
            if a.discord_user_id == discord_user_id and a.guild_id == guild_id and a.verified
        ]

    def get_all_linked_accounts(self) -> list[LinkedAccount]:
        return [a for a in self.accounts.values() if a.verified]

    def update_linked_account_rank(self, account_id: str, rank: str) -> LinkedAccount:
        account = self.accounts.get(account_id)
        if account is None:
            raise NotFoundError(f"Linked account {account_id} not found")
        account = dataclasses.replace(account, rank=normalize_rank(rank))
        self.accounts[account_id] = account
        self._save()
        return account

    def is_account_linked_by_other(self, guild_id: int, username: str, exclude_user_id: int) -> bool:
        username = username.lower()
        return any(
            a.guild_id == guild_id
            and a.username.lower() == username
            and a.verified
            and a.discord_user_id != exclude_user_id
            for a in self.accounts.values()
        )
