"""
Authentication module for huntr-cli.

Provides:
- Clerk session storage and token refresh (with cookie rotation)
- Chrome DevTools Protocol client for session capture
- Credential resolution across flags, env, config file, keyring and prompt
"""

from huntr_cli.auth.errors import (
    HuntrAuthError,
    NoSessionStored,
    SessionExpired,
    UnexpectedResponseShape,
    RefreshFailed,
    NetworkError,
    DebuggerUnreachable,
    TabNotFound,
    CaptureTimeout,
    NoCredentialAvailable,
    CDPError,
    CDPTimeout,
    CDPEvaluationError,
)
from huntr_cli.auth.storage import (
    SecretStore,
    ConfigFile,
)
from huntr_cli.auth.session import (
    StoredSession,
    TokenExchange,
    ClerkSessionManager,
    extract_session_id,
    build_cookie_header,
    apply_rotation,
)
from huntr_cli.auth.cdp import (
    BrowserTab,
    CDPClient,
)
from huntr_cli.auth.capture import (
    CookieSnapshot,
    CheckReport,
    CaptureResult,
    BrowserLauncher,
    SessionCapture,
)
from huntr_cli.auth.manager import (
    TokenProvider,
    TokenManager,
)

__all__ = [
    # Errors
    "HuntrAuthError",
    "NoSessionStored",
    "SessionExpired",
    "UnexpectedResponseShape",
    "RefreshFailed",
    "NetworkError",
    "DebuggerUnreachable",
    "TabNotFound",
    "CaptureTimeout",
    "NoCredentialAvailable",
    "CDPError",
    "CDPTimeout",
    "CDPEvaluationError",
    # Storage
    "SecretStore",
    "ConfigFile",
    # Clerk session
    "StoredSession",
    "TokenExchange",
    "ClerkSessionManager",
    "extract_session_id",
    "build_cookie_header",
    "apply_rotation",
    # DevTools
    "BrowserTab",
    "CDPClient",
    # Capture
    "CookieSnapshot",
    "CheckReport",
    "CaptureResult",
    "BrowserLauncher",
    "SessionCapture",
    # Manager
    "TokenProvider",
    "TokenManager",
]
