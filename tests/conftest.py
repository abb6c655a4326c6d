from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import discord
import pytest

from cfapi import Problem, Submission, UserInfo, normalize_rank
from errors import NotFoundError
from problems import Challenge
from session import VerificationSession
from store import Store

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def epoch(dt: datetime) -> int:
    return int(dt.timestamp())


def make_submission(contest_id=1500, index="A", verdict="COMPILATION_ERROR", at=T0 + timedelta(minutes=2), sub_id=1):
    return Submission(
        id=sub_id,
        contest_id=contest_id,
        problem_index=index,
        problem_name="Some Problem",
        verdict=verdict,
        creation_time_seconds=epoch(at),
        programming_language="GNU C++17",
    )


def make_session(user_id=42, guild_id=7, username="alice", contest_id=1500, index="A",
                 now=T0, timeout_minutes=10):
    challenge = Challenge(contest_id=contest_id, index=index, name="Some Problem", rating=1800)
    return VerificationSession.start(user_id, guild_id, username, challenge, now=now, timeout_minutes=timeout_minutes)


class FakeCodeforces:
    """Stands in for CodeforcesClient: users, submissions and per-handle failures."""

    def __init__(self):
        self.users = {}
        self.submissions = {}
        self.problems = []
        self.info_errors = {}
        self.submission_errors = {}
        self.problemset_error = None
        self.calls = []

    def add_user(self, handle, rank="specialist", rating=1500):
        self.users[handle.lower()] = UserInfo(handle=handle, rank=rank, rating=rating)

    async def fetch_user_info(self, handle):
        self.calls.append(("user.info", handle))
        if handle.lower() in self.info_errors:
            raise self.info_errors[handle.lower()]
        if handle.lower() not in self.users:
            raise NotFoundError(f'Codeforces user "{handle}" not found')
        return self.users[handle.lower()]

    async def fetch_user_rank(self, handle):
        info = await self.fetch_user_info(handle)
        return normalize_rank(info.rank)

    async def fetch_recent_submissions(self, handle, count=10):
        self.calls.append(("user.status", handle, count))
        if handle.lower() in self.submission_errors:
            raise self.submission_errors[handle.lower()]
        return list(self.submissions.get(handle.lower(), []))[:count]

    async def fetch_problemset(self):
        self.calls.append(("problemset.problems",))
        if self.problemset_error is not None:
            raise self.problemset_error
        return list(self.problems)


class FakeRole:
    def __init__(self, role_id, name=""):
        self.id = role_id
        self.name = name or f"role-{role_id}"

    @property
    def mention(self):
        return f"<@&{self.id}>"

    def __repr__(self):
        return f"<FakeRole {self.id}>"


class FakeGuild:
    def __init__(self, guild_id, roles=()):
        self.id = guild_id
        self._roles = {r.id: r for r in roles}
        self.members = {}

    def get_role(self, role_id):
        return self._roles.get(role_id)

    async def fetch_member(self, user_id):
        if user_id not in self.members:
            response = SimpleNamespace(status=404, reason="Not Found")
            raise discord.NotFound(response, "Unknown Member")
        return self.members[user_id]


class FakeMember:
    def __init__(self, user_id, guild, roles=()):
        self.id = user_id
        self.guild = guild
        self.roles = list(roles)
        self.added = []
        self.removed = []
        self.add_error = None
        guild.members[user_id] = self

    def get_role(self, role_id):
        return next((r for r in self.roles if r.id == role_id), None)

    async def add_roles(self, *roles, reason=None):
        if self.add_error is not None:
            raise self.add_error
        self.added.extend(roles)
        for r in roles:
            if r not in self.roles:
                self.roles.append(r)

    async def remove_roles(self, *roles, reason=None):
        self.removed.extend(roles)
        self.roles = [r for r in self.roles if r not in roles]

    def __str__(self):
        return f"member-{self.id}"


class FakeBot:
    def __init__(self, *guilds):
        self.guilds = {g.id: g for g in guilds}

    def get_guild(self, guild_id):
        return self.guilds.get(guild_id)


@pytest.fixture
def store():
    return Store()


@pytest.fixture
def cf():
    return FakeCodeforces()


@pytest.fixture
def problems():
    return [
        Problem(contest_id=1500, index="A", name="Too Low", rating=1400),
        Problem(contest_id=1500, index="B", name="Lower Edge", rating=1500),
        Problem(contest_id=1500, index="C", name="Middle", rating=2000),
        Problem(contest_id=1500, index="D", name="Upper Edge", rating=2500),
        Problem(contest_id=1500, index="E", name="Too High", rating=2600),
        Problem(contest_id=1500, index="F", name="Unrated", rating=None),
    ]
