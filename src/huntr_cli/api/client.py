"""HTTP client for the Huntr API with a fresh bearer token per request."""

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from huntr_cli.auth.manager import TokenProvider

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """The Huntr API answered with an error, or did not answer at all."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


async def resolve_token(provider: TokenProvider) -> str:
    """Turn a TokenProvider into a token string."""
    token = provider if isinstance(provider, str) else await provider()
    if not token:
        raise ApiError("No API token available.")
    return token


class HuntrApiClient:
    """
    Async HTTP client for the personal Huntr API.

    Use as an async context manager; the underlying aiohttp session lives for
    the duration of the block.
    """

    def __init__(self, token_provider: TokenProvider, base_url: str, timeout: float = 30.0):
        self.token_provider = token_provider
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "HuntrApiClient":
        self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, *exc) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json: Any = None,
    ) -> Any:
        """Make an HTTP request, injecting a freshly resolved bearer token."""
        if self._session is None:
            raise RuntimeError("HuntrApiClient must be used as an async context manager")

        # Resolve per request: session-backed providers mint a new JWT every time
        token = await resolve_token(self.token_provider)
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        logger.debug(f"{method} {url}")
        try:
            async with self._session.request(method, url, params=params, json=json, headers=headers) as resp:
                if resp.status >= 400:
                    raise ApiError(await self._error_message(resp), status=resp.status)
                if resp.status == 204:
                    return None
                return await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise ApiError("No response from API - check your network connection") from e
        except aiohttp.ClientError as e:
            raise ApiError(f"No response from API - check your network connection ({e})") from e

    @staticmethod
    async def _error_message(resp: aiohttp.ClientResponse) -> str:
        message = "API request failed"
        try:
            data = await resp.json(content_type=None)
        except ValueError:
            data = None
        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict) and error.get("message"):
                message = error["message"]
            elif data.get("message"):
                message = data["message"]
        return f"HTTP {resp.status}: {message}"

    async def get(self, endpoint: str, params: Optional[dict] = None) -> Any:
        return await self.request("GET", endpoint, params=params)
