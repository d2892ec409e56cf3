"""Exceptions raised by Recall's storage and driver layers.

Extraction never raises these: malformed external session data is skipped.
They describe failures the CLI reports to the user with a remedy.
"""


class RecallError(Exception):
    """Base class for user-reportable Recall failures."""

    #: Short stage name shown to the user ("not found", "not initialized", ...).
    stage = "error"
    #: Command the user can run to fix the problem, if any.
    remedy: str | None = None


class RepoNotFoundError(RecallError):
    """No git repository encloses the working directory."""

    stage = "not in a git repository"
    remedy = "git init"


class NotInitializedError(RecallError):
    """The repository has no .recall/manifest.json."""

    stage = "not initialized"
    remedy = "recall init"


class AlreadyInitializedError(RecallError):
    """initialize() was called on a repository that is already set up."""

    stage = "already initialized"


class StoreCorruptError(RecallError):
    """A line of .recall/events.jsonl could not be parsed."""

    stage = "store corrupt"
    remedy = "git checkout -- .recall/events.jsonl"

    def __init__(self, path: str, line_number: int, reason: str):
        self.path = path
        self.line_number = line_number
        self.reason = reason
        super().__init__(f"{path}:{line_number}: {reason}")
