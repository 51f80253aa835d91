"""
Authentication manager - resolves which credential to use.
"""

import logging
import sys
from typing import Awaitable, Callable, Literal, Optional, Union

from rich.prompt import Prompt

from huntr_cli.auth.errors import NoCredentialAvailable
from huntr_cli.auth.session import ClerkSessionManager
from huntr_cli.auth.storage import ACCOUNT_API_TOKEN, ConfigFile, SecretStore
from huntr_cli.config import Settings
from huntr_cli.utils.console import console

logger = logging.getLogger(__name__)

# A static token, or a coroutine function returning a fresh one
TokenProvider = Union[str, Callable[[], Awaitable[str]]]

SaveLocation = Literal["config", "keychain"]


class TokenManager:
    """
    Produces a TokenProvider for the API client.

    Tries sources in order:
    1. --token argument (static)
    2. HUNTR_API_TOKEN (static)
    3. Stored Clerk session (refreshed before every request)
    4. Static token from ~/.huntr/config.json, then the keyring
    5. Interactive prompt
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[SecretStore] = None,
        config_file: Optional[ConfigFile] = None,
        session_manager: Optional[ClerkSessionManager] = None,
    ):
        self.settings = settings
        self.store = store or SecretStore.from_settings(settings)
        self.config_file = config_file or ConfigFile(settings.config_file)
        self.session = session_manager or ClerkSessionManager(settings, self.store)

    def resolve(self, token: Optional[str] = None) -> Optional[tuple[str, TokenProvider]]:
        """First configured source as (label, provider), without prompting."""
        if token:
            logger.debug("Using token from command line")
            return "command line", token

        if self.settings.api_token:
            logger.debug("Using token from HUNTR_API_TOKEN")
            return "HUNTR_API_TOKEN", self.settings.api_token

        if self.session.has_session():
            logger.debug("Using stored Clerk session (auto-refresh)")
            return "Clerk session", self.session.get_fresh_token

        config_token = self.config_file.get_token()
        if config_token:
            logger.debug(f"Using token from {self.config_file.path}")
            return "config.json", config_token

        keychain_token = self.keychain_token()
        if keychain_token:
            logger.debug("Using token from keyring")
            return "keyring", keychain_token

        return None

    def get_token_provider(self, token: Optional[str] = None, use_prompt: bool = True) -> TokenProvider:
        """
        Resolve credentials.

        Args:
            token: Explicit token from the command line.
            use_prompt: Ask interactively when nothing else is configured.

        Raises:
            NoCredentialAvailable: every source came up empty.
        """
        resolved = self.resolve(token)
        if resolved is not None:
            return resolved[1]

        if use_prompt and sys.stdin.isatty():
            prompted = self._prompt_for_token()
            if prompted:
                return prompted

        raise NoCredentialAvailable(
            "No Huntr credentials found. Options:\n"
            "  • Clerk session (recommended): huntr config capture-session\n"
            "                                 huntr config set-session <__session-cookie>\n"
            "  • Static token:                huntr config set-token <token> [--keychain]\n"
            "  • CLI flag:                    huntr --token <token> <command>\n"
            "  • Environment:                 HUNTR_API_TOKEN=<token> huntr <command>"
        )

    def _prompt_for_token(self) -> Optional[str]:
        token = Prompt.ask("Enter your Huntr API token", password=True, console=console).strip()
        if not token:
            return None

        choice = Prompt.ask(
            "Where would you like to save this token?",
            choices=["config", "keychain", "none"],
            default="none",
            console=console,
        )
        if choice != "none":
            self.save_token(token, choice)
        return token

    def keychain_token(self) -> Optional[str]:
        return self.store.get(self.settings.keyring_service, ACCOUNT_API_TOKEN)

    def save_token(self, token: str, location: SaveLocation) -> None:
        if location == "config":
            self.config_file.set_token(token)
            logger.info(f"Token saved to {self.config_file.path}")
        else:
            self.store.set(self.settings.keyring_service, ACCOUNT_API_TOKEN, token)
            logger.info(f"Token saved to {self.store.backend_name}")

    def clear_token(self, location: Literal["config", "keychain", "all"] = "all") -> None:
        if location in ("config", "all"):
            self.config_file.clear_token()
        if location in ("keychain", "all"):
            self.store.delete(self.settings.keyring_service, ACCOUNT_API_TOKEN)

    def token_sources(self) -> dict[str, bool]:
        """Which credential sources are currently configured."""
        return {
            "env": bool(self.settings.api_token),
            "clerk_session": self.session.has_session(),
            "config": self.config_file.get_token() is not None,
            "keychain": self.keychain_token() is not None,
        }
