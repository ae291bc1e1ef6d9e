"""
Error taxonomy for the Rule of Life service.

None of these are meant to crash the process: configuration problems become
a blocking "configuration required" state, auth failures fall back to
anonymous sign-in, and sync failures are logged while the last good state
stays on screen.
"""


class SpireError(Exception):
    """Base class for every error raised by this service."""


class ConfigurationError(SpireError):
    """Required connection configuration is missing or malformed."""


class AuthError(SpireError):
    """A sign-in method was rejected."""


class SyncError(SpireError):
    """A subscription or write against the document store failed."""


class SchemaEditError(SpireError):
    """A structural edit was rejected.

    reason is "unknown" (no such category/habit), "conflict" (duplicate id)
    or "invalid" (bad field value).
    """

    def __init__(self, message: str, *, reason: str = "unknown"):
        super().__init__(message)
        self.reason = reason
