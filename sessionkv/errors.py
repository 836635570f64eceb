"""
Exception hierarchy for the session store.

Only TransientRemoteError and ConfigError are ever raised across module
boundaries. The rest describe failure *results*: components hand them back
inside result objects instead of raising, so that the public API is the
single place where a failure turns into a host-facing action.
"""

from typing import Optional


class SessionStoreError(Exception):
    """Base class for all session store errors"""
    pass


class ConfigError(SessionStoreError):
    """Invalid configuration value"""
    pass


# ============ Remote store ============

class TransientRemoteError(SessionStoreError):
    """A remote store call failed in a way that may succeed on retry"""

    def __init__(self, operation: str, key: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.key = key
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{operation} {key!r} failed{detail}")


class ExhaustedRetries(SessionStoreError):
    """Every retry attempt failed"""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"gave up after {attempts} attempt(s): {last_error}")


# ============ Session lock ============

class LockContention(SessionStoreError):
    """Another process holds a fresh session lock"""

    def __init__(self, entity_id: str, message: str):
        self.entity_id = entity_id
        super().__init__(message)


class IndeterminateLockState(SessionStoreError):
    """The session lock could not be read, so ownership is unknown"""

    def __init__(self, entity_id: str, message: str = "could not verify session lock"):
        self.entity_id = entity_id
        super().__init__(message)
