import random
from datetime import timedelta

import pytest

from cfapi import Problem
from conftest import T0, FakeGuild, FakeMember, FakeRole, make_session, make_submission
from errors import AccountConflictError, NotFoundError, PoolUnavailableError, TransportError, UpstreamError
from problems import ChallengeIssuer, ProblemPool
from verification import (
    Expired,
    LinkService,
    NotYetProven,
    VerificationEvaluator,
    Verified,
    submitted_after_start,
)


@pytest.fixture
def evaluator(cf, store):
    return VerificationEvaluator(cf, store)


@pytest.fixture
def service(cf, store):
    cf.problems = [Problem(contest_id=1500, index="A", name="Alpha", rating=1800)]
    return LinkService(cf, store, ChallengeIssuer(ProblemPool(cf), rng=random.Random(3)), timeout_minutes=10)


# --- evaluator ---

@pytest.mark.asyncio
async def test_compile_error_after_start_verifies(cf, store, evaluator):
    session = store.create_pending_verification(make_session())
    cf.submissions["alice"] = [make_submission(at=T0 + timedelta(minutes=2))]

    outcome = await evaluator.evaluate(session, now=T0 + timedelta(minutes=3))

    assert isinstance(outcome, Verified)
    assert outcome.submission.verdict == "COMPILATION_ERROR"
    assert ("user.status", "alice", 20) in cf.calls


@pytest.mark.asyncio
async def test_same_session_expires_after_deadline(cf, store, evaluator):
    session = store.create_pending_verification(make_session())
    cf.submissions["alice"] = [make_submission(at=T0 + timedelta(minutes=2))]

    outcome = await evaluator.evaluate(session, now=T0 + timedelta(minutes=11))

    assert isinstance(outcome, Expired)
    assert session.id not in store.sessions
    assert cf.calls == []


@pytest.mark.asyncio
async def test_submission_before_start_never_counts(cf, store, evaluator):
    session = store.create_pending_verification(make_session())
    cf.submissions["alice"] = [make_submission(at=T0 - timedelta(seconds=1))]

    outcome = await evaluator.evaluate(session, now=T0 + timedelta(minutes=1))

    assert isinstance(outcome, NotYetProven)
    assert outcome.message == "No submission found to the specified problem"


@pytest.mark.asyncio
async def test_submission_in_start_second_counts(cf, store, evaluator):
    session = store.create_pending_verification(make_session(now=T0 + timedelta(milliseconds=700)))
    cf.submissions["alice"] = [make_submission(at=T0)]

    assert submitted_after_start(int(T0.timestamp()), session.started_at)
    outcome = await evaluator.evaluate(session, now=T0 + timedelta(minutes=1))

    assert isinstance(outcome, Verified)


@pytest.mark.asyncio
async def test_wrong_answer_is_named_in_message(cf, store, evaluator):
    session = store.create_pending_verification(make_session())
    cf.submissions["alice"] = [make_submission(verdict="WRONG_ANSWER")]

    outcome = await evaluator.evaluate(session, now=T0 + timedelta(minutes=3, seconds=15))

    assert isinstance(outcome, NotYetProven)
    assert "WRONG_ANSWER" in outcome.message
    assert outcome.submission.verdict == "WRONG_ANSWER"
    assert outcome.time_left == "6m 45s"


@pytest.mark.asyncio
async def test_compile_error_found_behind_other_verdicts(cf, store, evaluator):
    session = store.create_pending_verification(make_session())
    cf.submissions["alice"] = [
        make_submission(verdict="WRONG_ANSWER", sub_id=3, at=T0 + timedelta(minutes=4)),
        make_submission(contest_id=1499, verdict="COMPILATION_ERROR", sub_id=2),
        make_submission(index="a", verdict="COMPILATION_ERROR", sub_id=1),
    ]

    outcome = await evaluator.evaluate(session, now=T0 + timedelta(minutes=5))

    assert isinstance(outcome, Verified)
    assert outcome.submission.id == 1


@pytest.mark.asyncio
async def test_other_problems_do_not_count(cf, store, evaluator):
    session = store.create_pending_verification(make_session())
    cf.submissions["alice"] = [make_submission(index="B"), make_submission(contest_id=1501)]

    outcome = await evaluator.evaluate(session, now=T0 + timedelta(minutes=5))

    assert isinstance(outcome, NotYetProven)
    assert outcome.submission is None
    assert outcome.time_left == "5m 0s"


@pytest.mark.asyncio
async def test_upstream_failure_keeps_session(cf, store, evaluator):
    session = store.create_pending_verification(make_session())
    cf.submission_errors["alice"] = UpstreamError("Call limit exceeded")

    with pytest.raises(UpstreamError):
        await evaluator.evaluate(session, now=T0 + timedelta(minutes=1))

    assert session.id in store.sessions


# --- link ---

@pytest.mark.asyncio
async def test_link_opens_session_with_canonical_handle(cf, store, service):
    cf.add_user("Alice", rank="Expert")

    start = await service.start(42, 7, "alice", now=T0)

    assert start.session.username == "Alice"
    assert start.session.problem_id == "1500A"
    assert start.session.expires_at == T0 + timedelta(minutes=10)
    assert start.user.rank == "Expert"
    assert list(store.sessions) == [start.session.id]


@pytest.mark.asyncio
async def test_link_unknown_handle(cf, store, service):
    with pytest.raises(NotFoundError):
        await service.start(42, 7, "ghost", now=T0)
    assert store.sessions == {}


@pytest.mark.asyncio
async def test_link_handle_owned_by_someone_else(cf, store, service):
    cf.add_user("bob")
    store.create_linked_account(41, 7, "bob", "pupil")

    with pytest.raises(AccountConflictError):
        await service.start(42, 7, "BOB", now=T0)
    assert store.sessions == {}


@pytest.mark.asyncio
async def test_link_without_problems(cf, store, service):
    cf.add_user("alice")
    cf.problems = []

    with pytest.raises(PoolUnavailableError):
        await service.start(42, 7, "alice", now=T0)


@pytest.mark.asyncio
async def test_relinking_replaces_the_session(cf, store):
    cf.add_user("alice")
    cf.problems = [
        Problem(contest_id=1500, index="A", name="Alpha", rating=1800),
        Problem(contest_id=1600, index="B", name="Beta", rating=1900),
    ]
    service = LinkService(cf, store, ChallengeIssuer(ProblemPool(cf), rng=random.Random(0)))

    await service.start(42, 7, "alice", now=T0)
    second = await service.start(42, 7, "alice", now=T0 + timedelta(seconds=1))

    live = store.get_pending_verifications(42, 7, now=T0 + timedelta(seconds=2))
    assert live == [second.session]
    assert live[0].problem_id == second.challenge.problem_id


# --- verify ---

def guild_with_roles():
    guild = FakeGuild(7, roles=[FakeRole(100), FakeRole(900), FakeRole(901)])
    return guild


@pytest.mark.asyncio
async def test_verify_links_account_and_assigns_roles(cf, store, service):
    cf.add_user("alice", rank="Expert")
    store.set_verified_role(7, 100)
    store.set_rank_role(7, "expert", 901)
    store.set_rank_role(7, "specialist", 900)
    member = FakeMember(42, guild_with_roles())
    start = await service.start(42, 7, "alice", now=T0)
    cf.submissions["alice"] = [make_submission(at=T0 + timedelta(minutes=1))]

    [report] = await service.complete(member, 42, 7, now=T0 + timedelta(minutes=2))

    assert report.success
    assert report.account.rank == "expert"
    assert report.roles.verified_role and report.roles.rank_role
    assert {r.id for r in member.roles} == {100, 901}
    assert start.session.id not in store.sessions
    assert store.get_linked_accounts(42, 7)[0].username == "alice"


@pytest.mark.asyncio
async def test_verify_without_rank_still_links(cf, store, service):
    cf.add_user("alice")
    member = FakeMember(42, guild_with_roles())
    await service.start(42, 7, "alice", now=T0)
    cf.submissions["alice"] = [make_submission(at=T0 + timedelta(minutes=1))]
    cf.info_errors["alice"] = TransportError("offline")

    [report] = await service.complete(member, 42, 7, now=T0 + timedelta(minutes=2))

    assert report.success
    assert report.account.rank is None
    assert report.roles.rank_role is False


@pytest.mark.asyncio
async def test_verify_reports_each_session(cf, store, service):
    cf.add_user("alice")
    cf.add_user("alice_alt")
    member = FakeMember(42, guild_with_roles())
    await service.start(42, 7, "alice", now=T0)
    await service.start(42, 7, "alice_alt", now=T0)
    cf.submissions["alice"] = [make_submission(verdict="WRONG_ANSWER")]
    cf.submission_errors["alice_alt"] = UpstreamError("Call limit exceeded")

    reports = await service.complete(member, 42, 7, now=T0 + timedelta(minutes=3))

    by_name = {r.session.username: r for r in reports}
    assert isinstance(by_name["alice"].outcome, NotYetProven)
    assert not by_name["alice"].success
    assert by_name["alice_alt"].outcome is None
    assert "Call limit exceeded" in by_name["alice_alt"].error
    assert len(store.sessions) == 2
    assert store.get_linked_accounts(42, 7) == []


@pytest.mark.asyncio
async def test_verify_blocks_handle_claimed_meanwhile(cf, store, service):
    cf.add_user("alice")
    member = FakeMember(42, guild_with_roles())
    start = await service.start(42, 7, "alice", now=T0)
    store.create_linked_account(41, 7, "alice", None)
    cf.submissions["alice"] = [make_submission(at=T0 + timedelta(minutes=1))]

    [report] = await service.complete(member, 42, 7, now=T0 + timedelta(minutes=2))

    assert not report.success
    assert "already linked" in report.error
    assert not report.retryable
    assert start.session.id not in store.sessions
    assert store.get_linked_accounts(42, 7) == []


@pytest.mark.asyncio
async def test_verify_with_nothing_pending(cf, store, service):
    member = FakeMember(42, guild_with_roles())

    assert await service.complete(member, 42, 7, now=T0) == []


@pytest.mark.asyncio
async def test_verify_save_failure_keeps_session_and_links_nothing(cf, store, service, monkeypatch):
    cf.add_user("alice")
    member = FakeMember(42, guild_with_roles())
    start = await service.start(42, 7, "alice", now=T0)
    cf.submissions["alice"] = [make_submission(at=T0 + timedelta(minutes=1))]

    def disk_full():
        raise OSError("No space left on device")

    monkeypatch.setattr(store, "_save", disk_full)

    [report] = await service.complete(member, 42, 7, now=T0 + timedelta(minutes=2))

    assert not report.success
    assert report.error.startswith("Verification successful but failed to save")
    assert report.retryable
    assert store.get_linked_accounts(42, 7) == []
    assert start.session.id in store.sessions
    assert member.added == []
