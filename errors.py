# errors.py


class VerificationBotError(Exception):
    """Base class for every error the bot reports to users."""


class NotFoundError(VerificationBotError):
    """A Codeforces handle (or problem, member, role) does not exist."""


class CodeforcesError(VerificationBotError):
    """The Codeforces API could not answer the request."""


class UpstreamError(CodeforcesError):
    """Codeforces answered with status FAILED."""

    def __init__(self, comment: str):
        super().__init__(f"Codeforces API error: {comment}")
        self.comment = comment


class ApiTimeoutError(CodeforcesError):
    def __init__(self, endpoint: str, timeout: float):
        super().__init__(f"Codeforces API request timed out ({endpoint}, {timeout:g}s)")
        self.endpoint = endpoint
        self.timeout = timeout


class TransportError(CodeforcesError):
    """Network failure or an unreadable response."""


class PoolUnavailableError(VerificationBotError):
    def __init__(self, reason: str = "No Codeforces problems available"):
        super().__init__(reason)


class AccountConflictError(VerificationBotError):
    def __init__(self, username: str):
        super().__init__(
            f"The Codeforces account {username} is already linked to another Discord user in this server."
        )
        self.username = username


class InvalidRankError(VerificationBotError):
    def __init__(self, rank: str):
        super().__init__(f"Unknown Codeforces rank: {rank}")
        self.rank = rank
