"""
Authentication errors.

Every failure the auth layer surfaces to the CLI is a HuntrAuthError, so
commands can report it with a single except clause.
"""

from typing import Optional


class HuntrAuthError(Exception):
    """Base class for credential and session errors."""


class NoSessionStored(HuntrAuthError):
    """No Clerk session cookie/id pair in the secret store."""


class SessionExpired(HuntrAuthError):
    """Clerk rejected the session (HTTP 401/403)."""

    def __init__(self, message: str, status: int):
        super().__init__(message)
        self.status = status


class UnexpectedResponseShape(HuntrAuthError):
    """Clerk answered 2xx but no token could be read from the body."""


class RefreshFailed(HuntrAuthError):
    """Clerk answered with a status other than 2xx/401/403."""

    def __init__(self, message: str, status: int, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class NetworkError(HuntrAuthError):
    """The token request never got a response."""


class DebuggerUnreachable(HuntrAuthError):
    """Chrome is not listening on the remote debugging port."""


class TabNotFound(HuntrAuthError):
    """No huntr.co page is open in the debug browser."""


class CaptureTimeout(HuntrAuthError):
    """Gave up waiting for an authenticated session in the browser."""

    def __init__(
        self,
        message: str,
        last_tab_url: Optional[str] = None,
        last_value_description: Optional[str] = None,
        last_error: Optional[str] = None,
    ):
        super().__init__(message)
        self.last_tab_url = last_tab_url
        self.last_value_description = last_value_description
        self.last_error = last_error


class NoCredentialAvailable(HuntrAuthError):
    """Every credential source came up empty."""


class CDPError(HuntrAuthError):
    """A DevTools round trip failed (transport or protocol error)."""


class CDPTimeout(CDPError):
    """A DevTools round trip got no matching response in time."""


class CDPEvaluationError(CDPError):
    """Runtime.evaluate reported an exception thrown in the page."""
