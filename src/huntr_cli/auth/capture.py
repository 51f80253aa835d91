"""
Session capture from a live Chrome via the DevTools Protocol.

Flow:
1. Probe Chrome's debugging port, launching Chrome with a dedicated profile if needed
2. Find a huntr.co tab (preferring an app page over the bare landing page)
3. Poll that tab's cookies until a __session value survives a real Clerk refresh
4. Store the validated session and smoke-test the stored copy
"""

import asyncio
import logging
import os
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from huntr_cli.auth.cdp import BrowserTab, CDPClient, matches_domain
from huntr_cli.auth.errors import (
    CaptureTimeout,
    CDPError,
    DebuggerUnreachable,
    HuntrAuthError,
    TabNotFound,
)
from huntr_cli.auth.session import (
    CLIENT_UAT_COOKIE,
    SESSION_COOKIE,
    ClerkSessionManager,
    StoredSession,
    extract_session_id,
    is_valid_session_id,
)
from huntr_cli.config import Settings
from huntr_cli.utils.console import print_step

logger = logging.getLogger(__name__)

CLERK_SESSION_ID_EXPRESSION = """(() => {
  const sid = window.Clerk?.session?.id;
  return typeof sid === 'string' ? sid : '';
})()"""

MAC_CHROME_PATHS = [
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/Applications/Chromium.app/Contents/MacOS/Chromium",
]
LINUX_CHROME_NAMES = ["google-chrome", "google-chrome-stable", "chromium", "chromium-browser"]


# =============================================================================
# SNAPSHOTS AND TAB SELECTION
# =============================================================================

@dataclass
class CookieSnapshot:
    """Session-relevant cookies seen in one tab during one poll."""
    session_cookie: Optional[str] = None
    client_uat: Optional[str] = None
    extra_cookies: dict[str, str] = field(default_factory=dict)
    page_session_id: Optional[str] = None

    @classmethod
    def from_cookies(cls, cookies: dict[str, str], page_session_id: Any = None) -> "CookieSnapshot":
        return cls(
            session_cookie=cookies.get(SESSION_COOKIE) or None,
            client_uat=cookies.get(CLIENT_UAT_COOKIE) or None,
            extra_cookies={
                name: value
                for name, value in cookies.items()
                if name not in (SESSION_COOKIE, CLIENT_UAT_COOKIE)
            },
            page_session_id=page_session_id if is_valid_session_id(page_session_id) else None,
        )

    @property
    def looks_like_jwt(self) -> bool:
        return bool(self.session_cookie) and len(self.session_cookie.split(".")) == 3

    def session_id(self) -> Optional[str]:
        """Id from the cookie itself, else the one Clerk JS holds in the page."""
        if not self.session_cookie:
            return None
        return extract_session_id(self.session_cookie) or self.page_session_id

    def visible_cookie_names(self) -> list[str]:
        names = list(self.extra_cookies)
        if self.session_cookie:
            names.append(SESSION_COOKIE)
        if self.client_uat:
            names.append(CLIENT_UAT_COOKIE)
        return sorted(names)

    def to_session(self, session_id: str) -> StoredSession:
        return StoredSession(
            session_cookie=self.session_cookie or "",
            session_id=session_id,
            client_uat=self.client_uat,
            extra_cookies=self.extra_cookies,
        )


def describe_value(value: Any) -> str:
    """Shape of a value without revealing it."""
    if value is None:
        return "none"
    if isinstance(value, str):
        return f"string, {len(value)} chars, {len(value.split('.'))} dot-separated segments"
    if isinstance(value, (list, tuple)):
        return f"array, {len(value)} items"
    if isinstance(value, dict):
        keys = ", ".join(list(value)[:6])
        return f"object, keys: {keys or '(none)'}"
    return type(value).__name__


def is_site_tab(tab: BrowserTab, domain: str) -> bool:
    return tab.is_page and matches_domain(tab.hostname, domain)


def is_app_tab(tab: BrowserTab, domain: str) -> bool:
    return is_site_tab(tab, domain) and len(tab.path) > 1


def find_site_tabs(tabs: list[BrowserTab], domain: str) -> list[BrowserTab]:
    """Site tabs, narrowed to app pages when any are open."""
    site_tabs = [tab for tab in tabs if is_site_tab(tab, domain)]
    app_tabs = [tab for tab in site_tabs if is_app_tab(tab, domain)]
    return app_tabs or site_tabs


def find_best_tab(tabs: list[BrowserTab], domain: str) -> Optional[BrowserTab]:
    # First match wins when several app tabs are open
    for tab in find_site_tabs(tabs, domain):
        if tab.websocket_debugger_url:
            return tab
    return None


# =============================================================================
# BROWSER LAUNCH
# =============================================================================

class BrowserLauncher:
    """Starts Chrome with remote debugging on a dedicated, reusable profile."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def find_browser(self) -> Optional[str]:
        if self.settings.chrome_path:
            return self.settings.chrome_path

        if sys.platform == "darwin":
            candidates = MAC_CHROME_PATHS
        elif os.name == "nt":
            roots = [os.environ.get(v, "") for v in ("PROGRAMFILES", "PROGRAMFILES(X86)", "LOCALAPPDATA")]
            candidates = [
                str(Path(root) / "Google" / "Chrome" / "Application" / "chrome.exe")
                for root in roots if root
            ]
        else:
            candidates = [path for path in map(shutil.which, LINUX_CHROME_NAMES) if path]

        for candidate in candidates:
            if Path(candidate).exists():
                return candidate
        return None

    def command(self, browser: str) -> list[str]:
        return [
            browser,
            f"--remote-debugging-port={self.settings.cdp_port}",
            f"--user-data-dir={self.settings.cdp_profile_dir}",
            "--no-first-run",
            "--no-default-browser-check",
            self.settings.app_url,
        ]

    def manual_command(self) -> str:
        browser = self.find_browser() or "google-chrome"
        return " ".join(f'"{part}"' if " " in part else part for part in self.command(browser))

    def launch(self) -> bool:
        """Spawn a detached Chrome. Returns False if no browser binary was found."""
        browser = self.find_browser()
        if browser is None:
            logger.warning("Could not find a Chrome executable; set HUNTR_CHROME_PATH")
            return False

        # Chrome requires an explicit user-data-dir when remote debugging is enabled
        self.settings.cdp_profile_dir.mkdir(parents=True, exist_ok=True)

        kwargs: dict[str, Any] = {}
        if os.name == "nt":
            kwargs["creationflags"] = subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        logger.debug(f"Launching {browser} with profile {self.settings.cdp_profile_dir}")
        try:
            subprocess.Popen(
                self.command(browser),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                **kwargs,
            )
        except OSError as e:
            logger.warning(f"Failed to launch {browser}: {e}")
            return False
        return True


# =============================================================================
# ORCHESTRATION
# =============================================================================

@dataclass
class CaptureResult:
    """A session that produced a valid token and is now stored."""
    session: StoredSession
    token: str
    tab: BrowserTab


@dataclass
class CheckReport:
    """What the diagnostic check saw. Nothing is stored."""
    tab: BrowserTab
    visible_cookies: list[str] = field(default_factory=list)
    session_id: Optional[str] = None
    validated: bool = False
    token_preview: Optional[str] = None
    error: Optional[str] = None


class SessionCapture:
    """Interactive capture of a Clerk session from the debug Chrome profile."""

    def __init__(
        self,
        settings: Settings,
        cdp: Optional[CDPClient] = None,
        session_manager: Optional[ClerkSessionManager] = None,
        launcher: Optional[BrowserLauncher] = None,
    ):
        self.settings = settings
        self.cdp = cdp or CDPClient.from_settings(settings)
        self.session_manager = session_manager or ClerkSessionManager(settings)
        self.launcher = launcher or BrowserLauncher(settings)
        self.domain = settings.site_domain

    def _unreachable_message(self, intro: str) -> str:
        return (
            f"{intro}\n"
            "Quit Chrome and re-run this command, or start Chrome manually with:\n"
            f"  {self.launcher.manual_command()}\n"
            f"  (On first use, sign in to {self.domain} in that profile once.)\n"
            "Then run: huntr config capture-session"
        )

    async def ensure_debugger(self) -> list[BrowserTab]:
        """List tabs, launching Chrome once if nothing is listening."""
        try:
            return await self.cdp.list_tabs()
        except DebuggerUnreachable as e:
            logger.debug(f"First probe failed: {e}")

        print_step(f"Chrome is not listening on port {self.settings.cdp_port}. Launching it...")
        self.launcher.launch()
        await asyncio.sleep(self.settings.launch_settle_delay)

        try:
            return await self.cdp.list_tabs()
        except DebuggerUnreachable as e:
            raise DebuggerUnreachable(
                self._unreachable_message("Could not connect to Chrome DevTools Protocol.")
            ) from e

    async def wait_for_tab(self, timeout: float) -> Optional[BrowserTab]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            try:
                tab = find_best_tab(await self.cdp.list_tabs(), self.domain)
            except DebuggerUnreachable:
                tab = None
            if tab is not None:
                return tab
            await asyncio.sleep(self.settings.poll_interval)
        return None

    async def locate_tab(self, tabs: list[BrowserTab]) -> BrowserTab:
        tab = find_best_tab(tabs, self.domain)
        if tab is not None:
            return tab

        print_step(f"Opening {self.settings.app_url} in the debug profile...")
        # Launching again with the same profile opens a tab in the running Chrome
        self.launcher.launch()
        print_step(f"Waiting for a {self.domain} tab...")
        tab = await self.wait_for_tab(self.settings.tab_wait_timeout)
        if tab is None:
            raise TabNotFound(
                f"No {self.domain} tab found in Chrome DevTools.\n"
                f"Open {self.settings.app_url} in Chrome (debug profile), log in, and re-run."
            )
        return tab

    async def snapshot(self, tab: BrowserTab) -> Optional[CookieSnapshot]:
        """Cookies plus Clerk's in-page session id. None when __session is not visible."""
        if not tab.websocket_debugger_url:
            return None

        cookies = await self.cdp.get_cookies(tab.websocket_debugger_url, tab.url)
        if not cookies.get(SESSION_COOKIE):
            return None

        try:
            page_session_id = await self.cdp.evaluate(
                tab.websocket_debugger_url, CLERK_SESSION_ID_EXPRESSION
            )
        except CDPError as e:
            logger.debug(f"Reading Clerk.session.id failed: {e}")
            page_session_id = None

        return CookieSnapshot.from_cookies(cookies, page_session_id)

    async def wait_for_valid_session(self, timeout: float) -> CaptureResult:
        """
        Poll site tabs until a captured cookie refreshes successfully.

        Only a real token exchange proves the cookie is live. The returned
        session already carries any rotation from that exchange.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        last_tab: Optional[BrowserTab] = None
        last_description: Optional[str] = None
        last_error: Optional[str] = None
        printed_hint = False

        while loop.time() < deadline:
            try:
                tabs = find_site_tabs(await self.cdp.list_tabs(), self.domain)
            except DebuggerUnreachable as e:
                last_error = str(e)
                tabs = []

            for tab in tabs:
                if not tab.websocket_debugger_url:
                    continue
                last_tab = tab

                try:
                    snapshot = await self.snapshot(tab)
                    last_description = describe_value(snapshot.session_cookie if snapshot else None)
                    if snapshot is None or not snapshot.looks_like_jwt:
                        continue

                    session_id = snapshot.session_id()
                    if not session_id:
                        continue

                    exchange = await self.session_manager.exchange(snapshot.to_session(session_id))
                    if len(exchange.token.split(".")) == 3:
                        return CaptureResult(session=exchange.session, token=exchange.token, tab=tab)
                    last_error = "Clerk returned a token that is not a JWT"
                except HuntrAuthError as e:
                    last_error = str(e)
                    logger.debug(f"Capture attempt on {tab.url} failed: {e}")

            if not printed_hint and tabs:
                print_step(f"Waiting for you to finish signing in to {self.domain} in that Chrome window...")
                printed_hint = True
            await asyncio.sleep(self.settings.poll_interval)

        details = [f"Last tab URL: {last_tab.url if last_tab else '(none)'}"]
        if last_description:
            details.append(f"Last cookie value: {last_description}")
        if last_error:
            details.append(f"Last error: {last_error}")
        raise CaptureTimeout(
            "Timed out waiting for an authenticated huntr session.\n"
            "Finish signing in on the opened Chrome window, then re-run.\n"
            + "\n".join(details),
            last_tab_url=last_tab.url if last_tab else None,
            last_value_description=last_description,
            last_error=last_error,
        )

    async def capture(self) -> CaptureResult:
        """Run the full capture flow and store the session."""
        print_step("Connecting to Chrome via DevTools Protocol...")
        tabs = await self.ensure_debugger()

        tab = await self.locate_tab(tabs)
        print_step(f"Found {self.domain} tab: {tab.title or tab.url}")
        print_step("Waiting for login and extracting the Clerk session cookie...")

        result = await self.wait_for_valid_session(self.settings.capture_timeout)
        print_step(f"Session ID: {result.session.session_id}")

        self.session_manager.store_session(result.session)
        print_step(f"Saved session to {self.session_manager.store.backend_name}")

        print_step("Testing auto-refresh from the stored session...")
        await self.session_manager.get_fresh_token()
        return result

    async def check(self) -> CheckReport:
        """One read-only capture attempt that reports what is visible."""
        try:
            tabs = await self.cdp.list_tabs()
        except DebuggerUnreachable as e:
            raise DebuggerUnreachable(
                self._unreachable_message("Could not connect to Chrome DevTools Protocol.")
            ) from e

        tab = find_best_tab(tabs, self.domain)
        if tab is None:
            raise TabNotFound(
                f"No {self.domain} page tab found. Open {self.domain} in the debug-profile Chrome and retry."
            )
        print_step(f"Using tab: {tab.title or '(untitled)'}")
        print_step(f"URL: {tab.url or '(unknown)'}")

        report = CheckReport(tab=tab)
        snapshot = await self.snapshot(tab)
        if snapshot is None:
            report.error = (
                "CDP connected, but the __session cookie is not visible yet.\n"
                "Finish login in that tab, wait for the app page to load, then retry."
            )
            return report

        report.visible_cookies = snapshot.visible_cookie_names()
        report.session_id = snapshot.session_id()
        if not report.session_id:
            report.error = "Found a __session cookie, but could not derive a valid Clerk session ID."
            return report

        try:
            token = await self.session_manager.refresh_from_provided_session(
                snapshot.session_cookie,
                report.session_id,
                snapshot.client_uat,
                snapshot.extra_cookies,
            )
        except HuntrAuthError as e:
            report.error = str(e)
            return report

        report.validated = True
        report.token_preview = f"{token[:20]}..."
        return report
