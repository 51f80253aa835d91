"""
Clerk session-based token refresh.

Huntr authenticates through Clerk. The browser holds a long-lived ``__session``
cookie whose value Clerk rotates silently; POSTing it to the Clerk frontend API
tokens endpoint returns a fresh short-lived JWT:

    POST https://clerk.huntr.co/v1/client/sessions/{session_id}/tokens
    Cookie: __session=<value>; __client_uat=<value>
    -> {"object": "token", "jwt": "ey..."}

Clerk may answer with ``Set-Cookie`` carrying a new ``__session`` value. The
rotated value must be stored, otherwise the next refresh fails.
"""

import asyncio
import base64
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional
from urllib.parse import quote

import aiohttp

from huntr_cli.auth.errors import (
    NetworkError,
    NoSessionStored,
    RefreshFailed,
    SessionExpired,
    UnexpectedResponseShape,
)
from huntr_cli.auth.storage import SecretStore
from huntr_cli.config import Settings

logger = logging.getLogger(__name__)

# Secret store accounts (names shared with earlier installs)
ACCOUNT_SESSION_COOKIE = "clerk-session-cookie"
ACCOUNT_SESSION_ID = "clerk-session-id"
ACCOUNT_CLIENT_UAT = "clerk-client-uat"
ACCOUNT_EXTRA_COOKIES = "clerk-extra-cookies"

SESSION_COOKIE = "__session"
CLIENT_UAT_COOKIE = "__client_uat"
RESERVED_COOKIES = frozenset({SESSION_COOKIE, CLIENT_UAT_COOKIE})

SESSION_ID_PREFIX = "sess_"
# Sent when __client_uat was never observed.
DEFAULT_CLIENT_UAT = "1"

BODY_SNIPPET_LENGTH = 300

_SAFE_COOKIE_NAME = re.compile(r"[A-Za-z0-9_.-]+")

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/132.0.0.0 Safari/537.36"
)


def is_safe_cookie_name(name: str) -> bool:
    """Cookie names allowed into a Cookie header."""
    return bool(_SAFE_COOKIE_NAME.fullmatch(name))


def _is_safe_cookie_value(value: str) -> bool:
    return bool(value) and not any(c in value for c in ";\r\n")


def strip_cookie_name(value: str) -> str:
    """Drop a leading ``__session=`` pasted together with the value."""
    value = value.strip()
    prefix = f"{SESSION_COOKIE}="
    return value[len(prefix):] if value.startswith(prefix) else value


def is_valid_session_id(value: Any) -> bool:
    return (
        isinstance(value, str)
        and value.startswith(SESSION_ID_PREFIX)
        and len(value) > len(SESSION_ID_PREFIX)
    )


def _b64url_decode(segment: str) -> bytes:
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


def extract_session_id(cookie_value: str) -> Optional[str]:
    """
    Recover the Clerk session id (sess_...) from a ``__session`` value.

    The cookie is a JWT; its payload carries the id as ``sid`` (older Clerk
    versions used ``session_id``). Returns None for anything that does not
    decode to a well-formed id. Never raises.
    """
    if not isinstance(cookie_value, str):
        return None

    parts = strip_cookie_name(cookie_value).split(".")
    if len(parts) != 3:
        return None

    try:
        payload = json.loads(_b64url_decode(parts[1]))
    except (ValueError, RecursionError):
        # RecursionError: deeply nested JSON in a hostile payload
        return None

    if not isinstance(payload, dict):
        return None

    sid = payload.get("sid")
    if sid is None:
        sid = payload.get("session_id")
    return sid if is_valid_session_id(sid) else None


@dataclass(frozen=True)
class StoredSession:
    """The Clerk cookies needed to mint tokens outside the browser."""

    session_cookie: str
    session_id: str
    client_uat: Optional[str] = None
    extra_cookies: dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "session_cookie", strip_cookie_name(self.session_cookie))
        if self.client_uat is not None:
            object.__setattr__(self, "client_uat", self.client_uat.strip() or None)
        extras = {
            name: value
            for name, value in (self.extra_cookies or {}).items()
            if name not in RESERVED_COOKIES and isinstance(value, str) and value
        }
        object.__setattr__(self, "extra_cookies", extras)


@dataclass
class TokenExchange:
    """A successful refresh: the token and the session after rotation."""

    token: str
    session: StoredSession
    rotated: bool = False


def build_cookie_header(session: StoredSession) -> str:
    """Cookie header matching what the browser sends with credentials: 'include'."""
    parts = [
        f"{SESSION_COOKIE}={session.session_cookie}",
        f"{CLIENT_UAT_COOKIE}={session.client_uat or DEFAULT_CLIENT_UAT}",
    ]
    for name, value in session.extra_cookies.items():
        if name in RESERVED_COOKIES or not is_safe_cookie_name(name):
            continue
        if not _is_safe_cookie_value(value):
            continue
        parts.append(f"{name}={value}")
    return "; ".join(parts)


def parse_set_cookie(header: str) -> Optional[tuple[str, str]]:
    """First name=value pair of a Set-Cookie header, attributes ignored."""
    first_pair = header.split(";", 1)[0]
    name, sep, value = first_pair.partition("=")
    name = name.strip()
    value = value.strip()
    if not sep or not name or not value:
        return None
    return name, value


def apply_rotation(session: StoredSession, set_cookie_headers: Iterable[str]) -> StoredSession:
    """Return a new session with the cookies Clerk just set applied."""
    session_cookie = session.session_cookie
    client_uat = session.client_uat
    extras = dict(session.extra_cookies)

    for header in set_cookie_headers:
        pair = parse_set_cookie(header)
        if pair is None:
            continue
        name, value = pair
        if name == SESSION_COOKIE:
            session_cookie = value
        elif name == CLIENT_UAT_COOKIE:
            client_uat = value
        elif is_safe_cookie_name(name):
            extras[name] = value

    return StoredSession(
        session_cookie=session_cookie,
        session_id=session.session_id,
        client_uat=client_uat,
        extra_cookies=extras,
    )


def _pick_token(data: Any) -> Optional[str]:
    # Clerk has used all three shapes across versions
    if not isinstance(data, dict):
        return None
    for key in ("jwt", "token"):
        if isinstance(data.get(key), str) and data[key]:
            return data[key]
    obj = data.get("object")
    if isinstance(obj, dict) and isinstance(obj.get("jwt"), str) and obj["jwt"]:
        return obj["jwt"]
    return None


class ClerkSessionManager:
    """
    Stores the Clerk session and exchanges it for fresh API tokens.

    The session must be re-captured from the browser only when Clerk ends it
    (every few weeks); rotation in between is handled here.
    """

    extract_session_id = staticmethod(extract_session_id)

    def __init__(self, settings: Settings, store: Optional[SecretStore] = None):
        self.settings = settings
        self.store = store or SecretStore.from_settings(settings)
        self.service = settings.keyring_service

    # -- storage -----------------------------------------------------------

    def load_session(self) -> Optional[StoredSession]:
        """Stored session, or None when the cookie/id pair is incomplete."""
        cookie = self.store.get(self.service, ACCOUNT_SESSION_COOKIE)
        session_id = self.store.get(self.service, ACCOUNT_SESSION_ID)
        if not cookie or not session_id:
            return None

        return StoredSession(
            session_cookie=cookie,
            session_id=session_id,
            client_uat=self.store.get(self.service, ACCOUNT_CLIENT_UAT),
            extra_cookies=self._load_extra_cookies(),
        )

    def _load_extra_cookies(self) -> dict[str, str]:
        raw = self.store.get(self.service, ACCOUNT_EXTRA_COOKIES)
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except ValueError:
            logger.warning("Stored extra cookies are not valid JSON, ignoring them")
            return {}
        if not isinstance(parsed, dict):
            return {}
        return {k: v for k, v in parsed.items() if isinstance(v, str) and v}

    def has_session(self) -> bool:
        return self.load_session() is not None

    def save_session(
        self,
        session_cookie: str,
        session_id: str,
        client_uat: Optional[str] = None,
        extra_cookies: Optional[dict[str, str]] = None,
    ) -> StoredSession:
        """Store all four session fields as one unit (ValueError if cookie or id is empty)."""
        session = StoredSession(
            session_cookie=session_cookie,
            session_id=session_id,
            client_uat=client_uat,
            extra_cookies=extra_cookies or {},
        )
        self.store_session(session)
        return session

    def store_session(self, session: StoredSession) -> None:
        """
        Persist a session, replacing whatever was stored.

        Raises:
            ValueError: if the cookie or the session id is empty. The stored
                session is left untouched.
        """
        if not session.session_cookie:
            raise ValueError("Session cookie must not be empty")
        if not session.session_id:
            raise ValueError("Session ID must not be empty")

        self.store.set(self.service, ACCOUNT_SESSION_COOKIE, session.session_cookie)
        self.store.set(self.service, ACCOUNT_SESSION_ID, session.session_id)
        if session.client_uat:
            self.store.set(self.service, ACCOUNT_CLIENT_UAT, session.client_uat)
        else:
            self.store.delete(self.service, ACCOUNT_CLIENT_UAT)
        if session.extra_cookies:
            self.store.set(self.service, ACCOUNT_EXTRA_COOKIES, json.dumps(session.extra_cookies))
        else:
            self.store.delete(self.service, ACCOUNT_EXTRA_COOKIES)

        logger.debug(
            f"Stored session {session.session_id} "
            f"(cookie {len(session.session_cookie)} chars, {len(session.extra_cookies)} extra cookies)"
        )

    def clear_session(self) -> None:
        for account in (
            ACCOUNT_SESSION_COOKIE,
            ACCOUNT_SESSION_ID,
            ACCOUNT_CLIENT_UAT,
            ACCOUNT_EXTRA_COOKIES,
        ):
            self.store.delete(self.service, account)

    # -- token refresh -----------------------------------------------------

    async def get_fresh_token(self) -> str:
        """Mint a token from the stored session and persist any rotation."""
        session = self.load_session()
        if session is None:
            raise NoSessionStored(
                "No Clerk session stored. Run:\n"
                "  huntr config capture-session\n"
                "or paste the cookie yourself:\n"
                "  huntr config set-session <__session-cookie-value>"
            )

        result = await self.exchange(session)
        # Always write back: Clerk may have rotated __session server-side
        self.store_session(result.session)
        if result.rotated:
            logger.info("Clerk rotated the session cookie; stored the new value")
        return result.token

    async def refresh_from_provided_session(
        self,
        session_cookie: str,
        session_id: str,
        client_uat: Optional[str] = None,
        extra_cookies: Optional[dict[str, str]] = None,
    ) -> str:
        """Mint a token from caller-supplied values. Nothing is stored."""
        session = StoredSession(
            session_cookie=session_cookie,
            session_id=session_id,
            client_uat=client_uat,
            extra_cookies=extra_cookies or {},
        )
        result = await self.exchange(session)
        return result.token

    async def exchange(self, session: StoredSession) -> TokenExchange:
        """POST the session to Clerk and return the token plus rotated session."""
        url = (
            f"{self.settings.clerk_frontend_api.rstrip('/')}"
            f"/v1/client/sessions/{quote(session.session_id, safe='')}/tokens"
        )
        site = self.settings.site_url.rstrip("/")
        headers = {
            "Cookie": build_cookie_header(session),
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
            "User-Agent": BROWSER_USER_AGENT,
            "Origin": site,
            "Referer": f"{site}/",
            "sec-fetch-site": "same-site",
            "sec-fetch-mode": "cors",
            "sec-fetch-dest": "empty",
        }
        params = {"_clerk_js_version": self.settings.clerk_js_version}
        timeout = aiohttp.ClientTimeout(total=self.settings.request_timeout)

        logger.debug(f"Refreshing token for session {session.session_id}")
        try:
            # DummyCookieJar: the Cookie header above is the only cookie source
            async with aiohttp.ClientSession(
                timeout=timeout, cookie_jar=aiohttp.DummyCookieJar()
            ) as http:
                async with http.post(url, params=params, headers=headers, data=b"") as resp:
                    status = resp.status
                    body = await resp.text(errors="replace")
                    set_cookies = resp.headers.getall("Set-Cookie", [])
        except asyncio.TimeoutError as e:
            raise NetworkError(
                f"Network error refreshing token: no response within {self.settings.request_timeout}s"
            ) from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Network error refreshing token: {e}") from e

        snippet = body[:BODY_SNIPPET_LENGTH]

        if status in (200, 201):
            try:
                data = json.loads(body)
            except ValueError:
                raise UnexpectedResponseShape(f"Failed to parse Clerk response: {snippet}")
            token = _pick_token(data)
            if not token:
                raise UnexpectedResponseShape(f"Unexpected Clerk response: {snippet}")

            rotated = apply_rotation(session, set_cookies)
            return TokenExchange(
                token=token,
                session=rotated,
                rotated=rotated.session_cookie != session.session_cookie,
            )

        if status in (401, 403):
            raise SessionExpired(
                f"Clerk session expired or invalid (HTTP {status}).\n"
                "Capture a new session from the browser:\n"
                "  huntr config capture-session\n"
                "or copy DevTools -> Application -> Cookies -> https://huntr.co -> __session and run:\n"
                "  huntr config set-session <new-value>",
                status=status,
            )

        raise RefreshFailed(
            f"Clerk token refresh failed: HTTP {status}\n{snippet}",
            status=status,
            body=snippet,
        )
