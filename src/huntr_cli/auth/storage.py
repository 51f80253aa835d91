"""
Secret storage using the system keyring, plus the plaintext config file.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

import keyring
from keyring.backends import fail
from keyring.errors import KeyringError, PasswordDeleteError

from huntr_cli.config import Settings

logger = logging.getLogger(__name__)

ACCOUNT_API_TOKEN = "api-token"


class SecretStore:
    """Secure key/value storage for named credential blobs."""

    def __init__(self, auth_dir: Optional[Path] = None, use_keyring: Optional[bool] = None):
        """
        Initialize secret store.

        Args:
            auth_dir: Directory for file-based storage when no keyring backend works.
            use_keyring: Force keyring on/off. None means "use it if a real backend exists".
        """
        self._auth_dir = auth_dir
        if use_keyring is None:
            use_keyring = self._check_keyring()
        self._keyring_available = use_keyring

    @classmethod
    def from_settings(cls, settings: Settings) -> "SecretStore":
        return cls(auth_dir=settings.auth_dir)

    @property
    def backend_name(self) -> str:
        if self._keyring_available:
            return type(keyring.get_keyring()).__name__
        return f"file ({self._get_secrets_file()})"

    def _check_keyring(self) -> bool:
        """Check if a usable keyring backend is configured."""
        backend = keyring.get_keyring()
        if isinstance(backend, fail.Keyring):
            logger.debug("No keyring backend available, using file storage")
            return False
        return True

    def get(self, service: str, account: str) -> Optional[str]:
        """Return the stored value or None."""
        if self._keyring_available:
            try:
                return keyring.get_password(service, account)
            except KeyringError as e:
                logger.warning(f"Failed to read {account} from keyring: {e}")
                return None
        return self._load_file().get(self._key(service, account))

    def set(self, service: str, account: str, value: str) -> None:
        """Store a value, replacing any previous one."""
        if self._keyring_available:
            keyring.set_password(service, account, value)
            logger.debug(f"Saved {account} to system keyring")
            return

        data = self._load_file()
        data[self._key(service, account)] = value
        self._save_file(data)

    def delete(self, service: str, account: str) -> bool:
        """
        Delete a value.

        Returns:
            True if something was deleted.
        """
        if self._keyring_available:
            try:
                keyring.delete_password(service, account)
                return True
            except PasswordDeleteError:
                return False

        data = self._load_file()
        if data.pop(self._key(service, account), None) is None:
            return False
        self._save_file(data)
        return True

    @staticmethod
    def _key(service: str, account: str) -> str:
        return f"{service}/{account}"

    def _get_auth_dir(self) -> Path:
        """Get the auth directory path."""
        if self._auth_dir:
            return self._auth_dir
        return Settings().auth_dir

    def _get_secrets_file(self) -> Path:
        return self._get_auth_dir() / "secrets.json"

    def _load_file(self) -> dict[str, str]:
        """Load from file (fallback)."""
        secrets_file = self._get_secrets_file()
        if not secrets_file.exists():
            return {}
        try:
            with open(secrets_file, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable secrets file {secrets_file}: {e}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _save_file(self, data: dict[str, str]) -> None:
        """Save to file (fallback when keyring unavailable)."""
        secrets_file = self._get_secrets_file()
        secrets_file.parent.mkdir(parents=True, exist_ok=True)

        # Create with restrictive permissions before writing any secret
        fd = os.open(secrets_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
        if os.name != "nt":
            os.chmod(secrets_file, 0o600)

        logger.debug(f"Secrets saved to {secrets_file}")


class ConfigFile:
    """Plaintext JSON config (~/.huntr/config.json) holding a static API token."""

    def __init__(self, path: Path):
        self.path = path

    def read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.debug(f"Failed to read config file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def write(self, config: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2)

    def get_token(self) -> Optional[str]:
        token = self.read().get("apiToken")
        return token if isinstance(token, str) and token else None

    def set_token(self, token: str) -> None:
        config = self.read()
        config["apiToken"] = token
        self.write(config)

    def clear_token(self) -> None:
        config = self.read()
        if config.pop("apiToken", None) is not None:
            self.write(config)
