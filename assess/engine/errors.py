"""Error taxonomy shared by the session engine and its store clients."""


class AssessError(Exception):
    """Base class for session engine errors."""


class TransientNetworkError(AssessError):
    """Network call failed in a way that may succeed on retry."""


class JudgeUnavailableError(TransientNetworkError):
    """Judge service unreachable or failed internally; not the student's fault."""


class ValidationError(AssessError, ValueError):
    """
    User-facing input problem (missing code or choice). Never sent to the server.
    A ValueError so pydantic validators report it as a field error.
    """


class RunInProgressError(ValidationError):
    """A test run for this problem is still outstanding."""


class AttemptAlreadyExistsError(AssessError):
    """Create raced with an existing attempt; callers treat it as success."""


class FatalStateError(AssessError):
    """Assessment or problem does not exist. Terminal, no retry."""
