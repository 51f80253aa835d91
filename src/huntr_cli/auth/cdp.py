"""
Chrome DevTools Protocol client.

Talks to a Chrome started with --remote-debugging-port: lists tabs over HTTP
and runs single JSON-RPC commands over a fresh WebSocket per call.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional
from urllib.parse import urlsplit

import aiohttp

from huntr_cli.auth.errors import CDPError, CDPEvaluationError, DebuggerUnreachable
from huntr_cli.auth.websocket import round_trip
from huntr_cli.config import Settings

logger = logging.getLogger(__name__)

# Cookies of the Clerk identity system worth reading from the browser
CAPTURED_COOKIE_NAMES = frozenset({"__session", "__client_uat", "__client", "__cf_bm", "_cfuvid"})


def matches_domain(host: str, domain: str) -> bool:
    """True for the domain itself and its subdomains (cookie domains may start with a dot)."""
    host = host.lower().lstrip(".")
    domain = domain.lower().lstrip(".")
    return bool(host) and bool(domain) and (host == domain or host.endswith("." + domain))


@dataclass
class BrowserTab:
    """One debuggable target from the /json listing."""
    id: str = ""
    url: str = ""
    title: str = ""
    type: str = ""
    websocket_debugger_url: Optional[str] = None

    @classmethod
    def from_json(cls, data: Any) -> Optional["BrowserTab"]:
        if not isinstance(data, dict):
            return None
        ws_url = data.get("webSocketDebuggerUrl")
        return cls(
            id=str(data.get("id") or ""),
            url=str(data.get("url") or ""),
            title=str(data.get("title") or ""),
            type=str(data.get("type") or ""),
            websocket_debugger_url=ws_url if isinstance(ws_url, str) and ws_url else None,
        )

    @property
    def is_page(self) -> bool:
        return self.type == "page"

    @property
    def hostname(self) -> str:
        try:
            return urlsplit(self.url).hostname or ""
        except ValueError:
            return ""

    @property
    def path(self) -> str:
        try:
            return urlsplit(self.url).path
        except ValueError:
            return ""


class CDPClient:
    """Minimal DevTools client: list tabs, read cookies, evaluate JavaScript."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 9222,
        timeout: float = 10.0,
        transport: str = "aiohttp",
        site_domain: str = "huntr.co",
        cookie_urls: Iterable[str] = (),
        cookie_names: Iterable[str] = CAPTURED_COOKIE_NAMES,
    ):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.transport = transport
        self.site_domain = site_domain
        self.cookie_urls = list(cookie_urls)
        self.cookie_names = frozenset(cookie_names)
        self._ids = itertools.count(1)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CDPClient":
        return cls(
            host=settings.cdp_host,
            port=settings.cdp_port,
            timeout=settings.cdp_timeout,
            transport=settings.cdp_transport,
            site_domain=settings.site_domain,
            cookie_urls=settings.cookie_urls,
        )

    @property
    def endpoint(self) -> str:
        return f"http://{self.host}:{self.port}"

    async def list_tabs(self) -> list[BrowserTab]:
        """All debuggable targets. Raises DebuggerUnreachable if Chrome is not listening."""
        url = f"{self.endpoint}/json"
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as http:
                async with http.get(url) as resp:
                    if resp.status != 200:
                        raise DebuggerUnreachable(f"CDP returned HTTP {resp.status} for {url}")
                    data = await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise DebuggerUnreachable(f"No answer from Chrome DevTools at {url}") from e
        except (aiohttp.ClientError, ValueError) as e:
            raise DebuggerUnreachable(f"Cannot reach Chrome DevTools at {url}: {e}") from e

        if not isinstance(data, list):
            raise DebuggerUnreachable("Unexpected CDP /json response")

        tabs = [tab for tab in map(BrowserTab.from_json, data) if tab is not None]
        logger.debug(f"CDP lists {len(tabs)} targets")
        return tabs

    async def call(self, ws_url: str, method: str, params: Optional[dict] = None) -> dict:
        """Run one CDP command and return its result object."""
        request = {"id": next(self._ids), "method": method, "params": params or {}}
        response = await round_trip(ws_url, request, self.timeout, self.transport)

        error = response.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise CDPError(message or f"CDP {method} failed")

        result = response.get("result")
        return result if isinstance(result, dict) else {}

    async def get_cookies(self, ws_url: str, page_url: Optional[str] = None) -> dict[str, str]:
        """
        Allow-listed site cookies visible to a tab.

        Returns an empty dict when the tab cannot be queried; missing cookies
        are normal while the user is still logging in.
        """
        try:
            await self.call(ws_url, "Network.enable")
        except CDPError as e:
            # Not every target supports Network.enable
            logger.debug(f"Network.enable failed: {e}")

        urls = list(dict.fromkeys([page_url, *self.cookie_urls] if page_url else self.cookie_urls))
        try:
            result = await self.call(ws_url, "Network.getCookies", {"urls": urls})
        except CDPError as e:
            logger.debug(f"Network.getCookies failed: {e}")
            return {}

        cookies = result.get("cookies")
        if not isinstance(cookies, list):
            return {}

        found = {}
        for cookie in cookies:
            if not isinstance(cookie, dict):
                continue
            name, value, domain = cookie.get("name"), cookie.get("value"), cookie.get("domain")
            if not isinstance(name, str) or not isinstance(value, str):
                continue
            if isinstance(domain, str) and not matches_domain(domain, self.site_domain):
                continue
            if name in self.cookie_names:
                found[name] = value
        return found

    async def evaluate(self, ws_url: str, expression: str) -> Any:
        """Evaluate JavaScript in the page, awaiting promises, and return the value."""
        result = await self.call(
            ws_url,
            "Runtime.evaluate",
            {"expression": expression, "awaitPromise": True, "returnByValue": True},
        )

        details = result.get("exceptionDetails")
        if details:
            text = "Runtime.evaluate failed"
            if isinstance(details, dict):
                exception = details.get("exception")
                if isinstance(exception, dict) and isinstance(exception.get("description"), str):
                    text = exception["description"]
                elif isinstance(details.get("text"), str):
                    text = details["text"]
            raise CDPEvaluationError(text)

        value = result.get("result")
        if not isinstance(value, dict):
            return None
        return value.get("value")
