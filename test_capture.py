#!/usr/bin/env python3
"""
Tests for session capture from a debuggable Chrome.

Tests:
1. Tab selection
2. Full capture against fake Chrome + fake Clerk servers
3. Rejected sessions, missing tabs and unreachable debugger
4. The read-only check
"""

import asyncio
import base64
import sys
import tempfile
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent / "src"))

from huntr_cli.auth import (
    BrowserTab,
    CaptureTimeout,
    ClerkSessionManager,
    CookieSnapshot,
    DebuggerUnreachable,
    SecretStore,
    SessionCapture,
    TabNotFound,
)
from huntr_cli.auth.capture import describe_value, find_best_tab, find_site_tabs
from huntr_cli.config import Settings

from fakes import FakeChrome, FakeClerk, closed_port, make_jwt, server_url

SESSION_COOKIE = make_jwt({"sid": "sess_capture1", "exp": 9999999999})
ROTATED_COOKIE = make_jwt({"sid": "sess_capture1", "exp": 9999999999, "rot": 1})

SITE_COOKIES = [
    {"name": "__session", "value": SESSION_COOKIE, "domain": "huntr.co"},
    {"name": "__client_uat", "value": "1700000000", "domain": ".huntr.co"},
    {"name": "__client", "value": "client-cookie", "domain": "clerk.huntr.co"},
]


class FakeLauncher:
    """Records launch attempts instead of starting Chrome."""

    def __init__(self):
        self.launches = 0

    def launch(self) -> bool:
        self.launches += 1
        return True

    def manual_command(self) -> str:
        return "chrome --remote-debugging-port=9222"


class CountingStore(SecretStore):
    def __init__(self, auth_dir: Path):
        super().__init__(auth_dir=auth_dir, use_keyring=False)
        self.writes = 0

    def set(self, service, account, value):
        self.writes += 1
        super().set(service, account, value)


def make_capture(tmp: str, cdp_port: int, clerk_url: str, transport: str = "aiohttp"):
    settings = Settings(
        api_token="",
        config_dir=Path(tmp),
        clerk_frontend_api=clerk_url,
        cdp_port=cdp_port,
        cdp_transport=transport,
        cdp_timeout=2.0,
        request_timeout=5.0,
        launch_settle_delay=0.0,
        tab_wait_timeout=0.5,
        capture_timeout=1.0,
        poll_interval=0.1,
    )
    store = CountingStore(Path(tmp) / "auth")
    manager = ClerkSessionManager(settings, store)
    launcher = FakeLauncher()
    capture = SessionCapture(settings, session_manager=manager, launcher=launcher)
    return capture, manager, store, launcher


# =============================================================================
# TAB SELECTION
# =============================================================================

def test_tab_selection():
    """Test that app pages win over the landing page."""
    print("TEST: find_best_tab")
    landing = BrowserTab(id="1", url="https://huntr.co/", type="page", websocket_debugger_url="ws://x/1")
    app = BrowserTab(id="2", url="https://huntr.co/home", type="page", websocket_debugger_url="ws://x/2")
    other = BrowserTab(id="3", url="https://example.com/home", type="page", websocket_debugger_url="ws://x/3")
    worker = BrowserTab(id="4", url="https://huntr.co/sw.js", type="service_worker", websocket_debugger_url="ws://x/4")
    no_ws = BrowserTab(id="5", url="https://huntr.co/board", type="page")

    assert find_best_tab([other, landing, app], "huntr.co") is app
    assert find_best_tab([other, landing], "huntr.co") is landing
    assert find_best_tab([other, worker], "huntr.co") is None
    assert find_best_tab([no_ws, app], "huntr.co") is app
    assert find_site_tabs([landing, app, other, worker], "huntr.co") == [app]
    print("  ✓ app tabs preferred, non-pages and other sites ignored")

    sub = BrowserTab(url="https://app.huntr.co/x", type="page", websocket_debugger_url="ws://x/6")
    assert find_best_tab([sub], "huntr.co") is sub
    print("  ✓ subdomains count as site tabs")

    lookalikes = [
        BrowserTab(url="https://evilhuntr.co/home", type="page", websocket_debugger_url="ws://x/7"),
        BrowserTab(url="https://huntr.co.example.net/home", type="page", websocket_debugger_url="ws://x/8"),
    ]
    assert find_best_tab(lookalikes, "huntr.co") is None
    print("  ✓ look-alike hosts are not site tabs")


def test_snapshot_helpers():
    """Test CookieSnapshot and describe_value."""
    print("\nTEST: CookieSnapshot")
    snapshot = CookieSnapshot.from_cookies(
        {"__session": SESSION_COOKIE, "__client": "c", "_cfuvid": "cf"},
        page_session_id="not-a-session",
    )
    assert snapshot.looks_like_jwt
    assert snapshot.session_id() == "sess_capture1"
    assert snapshot.page_session_id is None
    assert snapshot.visible_cookie_names() == ["__client", "__session", "_cfuvid"]
    print("  ✓ id from cookie, invalid page id dropped")

    opaque = CookieSnapshot.from_cookies({"__session": make_jwt({"foo": 1})}, page_session_id="sess_page")
    assert opaque.session_id() == "sess_page"
    print("  ✓ falls back to Clerk's in-page id")

    nested = base64.urlsafe_b64encode(b"[" * 3000).decode().rstrip("=")
    hostile = CookieSnapshot.from_cookies({"__session": f"eyJhbGciOiJSUzI1NiJ9.{nested}.sig"})
    assert hostile.session_id() is None
    print("  ✓ deeply nested cookie payload yields no id")

    assert describe_value(None) == "none"
    assert describe_value("a.b.c") == "string, 5 chars, 3 dot-separated segments"
    assert describe_value({"k": 1}) == "object, keys: k"
    assert SESSION_COOKIE not in describe_value(SESSION_COOKIE)
    print("  ✓ descriptions never include the value")


# =============================================================================
# CAPTURE
# =============================================================================

def test_capture_stores_rotated_session():
    """Test the happy path on both transports."""
    print("\nTEST: SessionCapture.capture")
    for transport in ("aiohttp", "raw"):
        chrome = FakeChrome(
            tabs=[{"url": "https://huntr.co/", "title": "Huntr"}, {"url": "https://huntr.co/home", "title": "Board"}],
            cookies=SITE_COOKIES,
            page_session_id="sess_capture1",
        )
        clerk = FakeClerk(set_cookies=[f"__session={ROTATED_COOKIE}; Path=/"])

        async def run():
            with tempfile.TemporaryDirectory() as tmp:
                async with chrome.server() as cdp_server, clerk.server() as clerk_server:
                    capture, manager, _, launcher = make_capture(
                        tmp, cdp_server.port, server_url(clerk_server), transport
                    )
                    result = await capture.capture()
                    return result, manager.load_session(), launcher.launches

        result, stored, launches = asyncio.run(run())
        assert result.tab.url == "https://huntr.co/home"
        assert result.session.session_id == "sess_capture1"
        assert stored.session_id == "sess_capture1"
        assert stored.session_cookie == ROTATED_COOKIE
        assert stored.client_uat == "1700000000"
        assert stored.extra_cookies == {"__client": "client-cookie"}
        assert launches == 0
        # Validation exchange plus the smoke test of the stored copy
        assert len(clerk.requests) == 2
        assert f"__session={ROTATED_COOKIE}" in clerk.requests[1]["cookie"]
        print(f"  ✓ {transport}: rotated session stored and re-verified")


def test_capture_rejected_session_times_out():
    """Test that a cookie Clerk refuses is never stored."""
    print("\nTEST: capture with a rejected session")
    chrome = FakeChrome(tabs=[{"url": "https://huntr.co/home"}], cookies=SITE_COOKIES)
    clerk = FakeClerk(status=401, body={"errors": []})

    async def run():
        with tempfile.TemporaryDirectory() as tmp:
            async with chrome.server() as cdp_server, clerk.server() as clerk_server:
                capture, manager, store, _ = make_capture(tmp, cdp_server.port, server_url(clerk_server))
                try:
                    await capture.capture()
                except CaptureTimeout as e:
                    return e, manager.load_session(), store.writes
                raise AssertionError("expected CaptureTimeout")

    error, stored, writes = asyncio.run(run())
    assert stored is None
    assert writes == 0
    assert error.last_tab_url == "https://huntr.co/home"
    assert "expired" in error.last_error
    assert "Last tab URL: https://huntr.co/home" in str(error)
    assert len(clerk.requests) >= 1
    print("  ✓ CaptureTimeout with diagnostics, nothing stored")


def test_capture_ignores_non_jwt_cookie():
    """Test that a placeholder __session never reaches Clerk."""
    print("\nTEST: capture with a non-JWT cookie")
    chrome = FakeChrome(
        tabs=[{"url": "https://huntr.co/home"}],
        cookies=[{"name": "__session", "value": "placeholder", "domain": "huntr.co"}],
    )
    clerk = FakeClerk()

    async def run():
        with tempfile.TemporaryDirectory() as tmp:
            async with chrome.server() as cdp_server, clerk.server() as clerk_server:
                capture, _, _, _ = make_capture(tmp, cdp_server.port, server_url(clerk_server))
                try:
                    await capture.wait_for_valid_session(0.5)
                except CaptureTimeout as e:
                    return e
                raise AssertionError("expected CaptureTimeout")

    error = asyncio.run(run())
    assert clerk.requests == []
    assert error.last_value_description == "string, 11 chars, 1 dot-separated segments"
    print("  ✓ no exchange attempted, value described")


def test_capture_launches_when_debugger_missing():
    """Test the launch-then-reprobe path when nothing listens."""
    print("\nTEST: capture with no debugger")

    async def run():
        with tempfile.TemporaryDirectory() as tmp:
            port = await closed_port()
            capture, _, _, launcher = make_capture(tmp, port, "http://127.0.0.1:1")
            try:
                await capture.capture()
            except DebuggerUnreachable as e:
                return e, launcher.launches
            raise AssertionError("expected DebuggerUnreachable")

    error, launches = asyncio.run(run())
    assert launches == 1
    assert "chrome --remote-debugging-port=9222" in str(error)
    print("  ✓ one launch attempt, manual command in the error")


def test_capture_without_site_tab():
    """Test that a browser without huntr tabs ends in TabNotFound."""
    print("\nTEST: capture with no site tab")
    chrome = FakeChrome(tabs=[{"url": "https://example.com/"}])

    async def run():
        with tempfile.TemporaryDirectory() as tmp:
            async with chrome.server() as cdp_server:
                capture, _, _, launcher = make_capture(tmp, cdp_server.port, "http://127.0.0.1:1")
                try:
                    await capture.capture()
                except TabNotFound:
                    return launcher.launches
                raise AssertionError("expected TabNotFound")

    launches = asyncio.run(run())
    assert launches == 1
    assert chrome.json_hits >= 2
    print("  ✓ app page opened once, then TabNotFound")


# =============================================================================
# CHECK
# =============================================================================

def test_check_never_writes():
    """Test the diagnostic check on a logged-in tab."""
    print("\nTEST: SessionCapture.check")
    chrome = FakeChrome(tabs=[{"url": "https://huntr.co/home", "title": "Board"}], cookies=SITE_COOKIES)
    clerk = FakeClerk(set_cookies=[f"__session={ROTATED_COOKIE}"])

    async def run():
        with tempfile.TemporaryDirectory() as tmp:
            async with chrome.server() as cdp_server, clerk.server() as clerk_server:
                capture, manager, store, launcher = make_capture(tmp, cdp_server.port, server_url(clerk_server))
                report = await capture.check()
                return report, store.writes, manager.load_session(), launcher.launches

    report, writes, stored, launches = asyncio.run(run())
    assert report.validated
    assert report.error is None
    assert report.session_id == "sess_capture1"
    assert report.visible_cookies == ["__client", "__client_uat", "__session"]
    assert report.token_preview.endswith("...")
    assert writes == 0
    assert stored is None
    assert launches == 0
    print("  ✓ validated without storing or launching")


def test_check_reports_problems():
    """Test the check's error reporting."""
    print("\nTEST: SessionCapture.check problems")

    async def run(chrome, clerk_status=200):
        with tempfile.TemporaryDirectory() as tmp:
            clerk = FakeClerk(status=clerk_status)
            async with chrome.server() as cdp_server, clerk.server() as clerk_server:
                capture, _, store, _ = make_capture(tmp, cdp_server.port, server_url(clerk_server))
                report = await capture.check()
                assert store.writes == 0
                return report

    report = asyncio.run(run(FakeChrome(tabs=[{"url": "https://huntr.co/home"}])))
    assert not report.validated
    assert "__session cookie is not visible" in report.error
    print("  ✓ missing cookie reported")

    chrome = FakeChrome(
        tabs=[{"url": "https://huntr.co/home"}],
        cookies=[{"name": "__session", "value": make_jwt({"foo": 1}), "domain": "huntr.co"}],
    )
    report = asyncio.run(run(chrome))
    assert not report.validated
    assert "session ID" in report.error
    print("  ✓ underivable session id reported")

    report = asyncio.run(run(FakeChrome(tabs=[{"url": "https://huntr.co/home"}], cookies=SITE_COOKIES), 403))
    assert not report.validated
    assert "HTTP 403" in report.error
    print("  ✓ rejected session reported")

    try:
        asyncio.run(run(FakeChrome(tabs=[{"url": "https://example.com/"}])))
    except TabNotFound:
        print("  ✓ no site tab raises TabNotFound")
    else:
        raise AssertionError("expected TabNotFound")


def main():
    """Run all tests."""
    print("=" * 70)
    print("SESSION CAPTURE TEST SUITE")
    print("=" * 70)

    try:
        test_tab_selection()
        test_snapshot_helpers()
        test_capture_stores_rotated_session()
        test_capture_rejected_session_times_out()
        test_capture_ignores_non_jwt_cookie()
        test_capture_launches_when_debugger_missing()
        test_capture_without_site_tab()
        test_check_never_writes()
        test_check_reports_problems()

        print("\n" + "=" * 70)
        print("✓ ALL TESTS PASSED")
        print("=" * 70)
        return 0

    except AssertionError as e:
        print(f"\n✗ TEST FAILED: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
