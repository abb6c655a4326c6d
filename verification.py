# verification.py
import logging
from dataclasses import dataclass

from cfapi import Submission, UserInfo
from config import COMMAND_PREFIX, VERIFICATION_TIMEOUT
from errors import AccountConflictError, CodeforcesError, VerificationBotError
from problems import Challenge
from roles import RoleAssignment, assign_verification_roles
from session import VerificationSession, utcnow
from store import LinkedAccount

log = logging.getLogger(__name__)

COMPILATION_ERROR = "COMPILATION_ERROR"
SUBMISSIONS_TO_CHECK = 20


# --- evaluation outcomes ---

@dataclass(frozen=True)
class Verified:
    message: str
    submission: Submission


@dataclass(frozen=True)
class NotYetProven:
    """The session stays open; the user may submit and check again until it expires."""
    message: str
    time_left: str
    submission: Submission | None = None


@dataclass(frozen=True)
class Expired:
    message: str


Outcome = Verified | NotYetProven | Expired


def submitted_after_start(creation_time_seconds: int, started_at) -> bool:
    # Codeforces timestamps are whole epoch seconds
    return creation_time_seconds >= int(started_at.timestamp())


def is_same_problem(sub: Submission, session: VerificationSession) -> bool:
    return sub.contest_id == session.contest_id and sub.problem_index.upper() == session.problem_index.upper()


def find_proof(submissions, session: VerificationSession):
    """
    Returns (proof, attempt): the first Compilation Error submission to the
    session's problem made after the session started, and the first
    submission of any verdict to that problem in the same window.
    """
    in_window = [
        s for s in submissions
        if is_same_problem(s, session) and submitted_after_start(s.creation_time_seconds, session.started_at)
    ]
    proof = next((s for s in in_window if s.verdict == COMPILATION_ERROR), None)
    attempt = in_window[0] if in_window else None
    return proof, attempt


class VerificationEvaluator:
    def __init__(self, client, store):
        self.client = client
        self.store = store

    async def evaluate(self, session: VerificationSession, now=None) -> Outcome:
        """
        Decide whether `session` has been proven. Expired sessions are deleted.
        Codeforces errors propagate and leave the session in place.
        """
        now = now or utcnow()
        if session.is_expired(now):
            self.store.delete_pending_verification(session.id)
            return Expired(f"Verification expired. Please start a new verification with `{COMMAND_PREFIX}link`.")

        submissions = await self.client.fetch_recent_submissions(session.username, SUBMISSIONS_TO_CHECK)
        proof, attempt = find_proof(submissions, session)
        if proof is not None:
            return Verified("Compilation Error submission found!", proof)

        time_left = session.time_left(now)
        if attempt is not None:
            verdict = attempt.verdict or "IN_QUEUE"
            return NotYetProven(
                f'Found submission but verdict was "{verdict}" instead of "{COMPILATION_ERROR}"',
                time_left,
                attempt,
            )
        return NotYetProven("No submission found to the specified problem", time_left)


# --- link / verify flow ---

@dataclass(frozen=True)
class LinkStart:
    session: VerificationSession
    user: UserInfo
    challenge: Challenge


@dataclass(frozen=True)
class SessionReport:
    session: VerificationSession
    outcome: Outcome | None
    account: LinkedAccount | None = None
    roles: RoleAssignment | None = None
    error: str | None = None
    # false once the session is gone and `verify` cannot be retried
    retryable: bool = True

    @property
    def success(self) -> bool:
        return self.account is not None


class LinkService:
    def __init__(self, client, store, issuer, timeout_minutes: int = VERIFICATION_TIMEOUT):
        self.client = client
        self.store = store
        self.issuer = issuer
        self.evaluator = VerificationEvaluator(client, store)
        self.timeout_minutes = timeout_minutes

    async def start(self, discord_user_id: int, guild_id: int, username: str, now=None) -> LinkStart:
        """
        Open a verification session for `username`, replacing any open session
        for the same handle. Raises NotFoundError for unknown handles and
        AccountConflictError when another member of the guild already owns it.
        """
        user = await self.client.fetch_user_info(username)
        if self.store.is_account_linked_by_other(guild_id, user.handle, discord_user_id):
            raise AccountConflictError(user.handle)

        challenge = await self.issuer.issue()
        session = VerificationSession.start(
            discord_user_id, guild_id, user.handle, challenge,
            now=now or utcnow(), timeout_minutes=self.timeout_minutes,
        )
        self.store.create_pending_verification(session)
        log.info("Started verification of %s for user %s in guild %s (%s)",
                 user.handle, discord_user_id, guild_id, session.problem_id)
        return LinkStart(session=session, user=user, challenge=challenge)

    async def complete(self, member, discord_user_id: int, guild_id: int, now=None) -> list[SessionReport]:
        """Evaluate every live session the user has in the guild."""
        now = now or utcnow()
        sessions = self.store.get_pending_verifications(discord_user_id, guild_id, now)
        reports = []
        for session in sessions:
            reports.append(await self._complete_session(member, session, now))
        return reports

    async def _complete_session(self, member, session: VerificationSession, now) -> SessionReport:
        try:
            outcome = await self.evaluator.evaluate(session, now)
        except CodeforcesError as e:
            log.warning("Could not check submissions of %s: %s", session.username, e)
            return SessionReport(session, None, error=f"Failed to check submissions: {e}")

        if not isinstance(outcome, Verified):
            return SessionReport(session, outcome)

        rank = None
        try:
            rank = await self.client.fetch_user_rank(session.username)
        except VerificationBotError as e:
            log.info("Could not fetch rank of %s (%s), continuing without it", session.username, e)

        if self.store.is_account_linked_by_other(session.guild_id, session.username, session.discord_user_id):
            self.store.delete_pending_verification(session.id)
            return SessionReport(session, outcome, error=str(AccountConflictError(session.username)), retryable=False)

        try:
            account = self.store.create_linked_account(
                session.discord_user_id, session.guild_id, session.username, rank, now=now,
            )
        except OSError as e:
            log.error("Could not save linked account %s: %s", session.username, e)
            return SessionReport(session, outcome, error=f"Verification successful but failed to save: {e}")

        try:
            self.store.delete_pending_verification(session.id)
        except OSError as e:
            log.warning("Linked %s but could not drop its pending session: %s", session.username, e)

        log.info("Verified %s for user %s in guild %s (rank: %s)",
                 session.username, session.discord_user_id, session.guild_id, rank or "none")
        roles = await assign_verification_roles(self.store, member, session.guild_id, rank)
        return SessionReport(session, outcome, account=account, roles=roles)
