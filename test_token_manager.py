#!/usr/bin/env python3
"""Tests for credential resolution order and static token storage."""

import json
import sys
import tempfile
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent / "src"))

from huntr_cli.auth import ClerkSessionManager, ConfigFile, NoCredentialAvailable, SecretStore, TokenManager
from huntr_cli.auth.storage import ACCOUNT_API_TOKEN
from huntr_cli.config import Settings

from fakes import make_jwt

SESSION_COOKIE = make_jwt({"sid": "sess_chain", "exp": 9999999999})


def make_manager(tmp: str, env_token: str = "") -> TokenManager:
    settings = Settings(api_token=env_token, config_dir=Path(tmp))
    store = SecretStore(auth_dir=Path(tmp) / "auth", use_keyring=False)
    return TokenManager(
        settings,
        store=store,
        config_file=ConfigFile(settings.config_file),
        session_manager=ClerkSessionManager(settings, store),
    )


def test_resolution_order():
    """Test explicit > env > session > config > keychain."""
    print("TEST: credential resolution order")
    with tempfile.TemporaryDirectory() as tmp:
        manager = make_manager(tmp, env_token="env-token")
        manager.save_token("config-token", "config")
        manager.save_token("keychain-token", "keychain")
        manager.session.save_session(SESSION_COOKIE, "sess_chain")

        assert manager.get_token_provider(token="flag-token", use_prompt=False) == "flag-token"
        assert manager.get_token_provider(use_prompt=False) == "env-token"
        assert manager.resolve("flag-token") == ("command line", "flag-token")
        assert manager.resolve() == ("HUNTR_API_TOKEN", "env-token")
        print("  ✓ flag beats env, env beats everything stored")

    with tempfile.TemporaryDirectory() as tmp:
        manager = make_manager(tmp)
        manager.save_token("config-token", "config")
        manager.save_token("keychain-token", "keychain")
        manager.session.save_session(SESSION_COOKIE, "sess_chain")

        provider = manager.get_token_provider(use_prompt=False)
        assert callable(provider)
        assert provider == manager.session.get_fresh_token
        assert manager.resolve()[0] == "Clerk session"
        print("  ✓ stored session yields a refreshing provider")

        manager.session.clear_session()
        assert manager.get_token_provider(use_prompt=False) == "config-token"
        assert manager.resolve() == ("config.json", "config-token")
        print("  ✓ config token next")

        manager.clear_token("config")
        assert manager.get_token_provider(use_prompt=False) == "keychain-token"
        assert manager.resolve() == ("keyring", "keychain-token")
        print("  ✓ keychain token last")


def test_half_stored_session_is_ignored():
    """Test that a session id without a cookie does not count as a session."""
    print("\nTEST: incomplete session")
    with tempfile.TemporaryDirectory() as tmp:
        manager = make_manager(tmp)
        manager.store.set("huntr-cli", "clerk-session-id", "sess_chain")
        manager.save_token("config-token", "config")
        assert manager.get_token_provider(use_prompt=False) == "config-token"
    print("  ✓ falls through to the config token")


def test_no_credentials():
    """Test the error when nothing is configured."""
    print("\nTEST: NoCredentialAvailable")
    with tempfile.TemporaryDirectory() as tmp:
        manager = make_manager(tmp)
        try:
            manager.get_token_provider(use_prompt=False)
        except NoCredentialAvailable as e:
            assert "capture-session" in str(e)
            assert "set-token" in str(e)
        else:
            raise AssertionError("expected NoCredentialAvailable")
        assert manager.resolve() is None
    print("  ✓ error lists the options")


def test_save_and_clear_tokens():
    """Test static token storage in config.json and the secret store."""
    print("\nTEST: save/clear tokens")
    with tempfile.TemporaryDirectory() as tmp:
        manager = make_manager(tmp)
        config_path = Path(tmp) / "config.json"
        config_path.write_text(json.dumps({"theme": "dark"}))

        manager.save_token("abc", "config")
        assert json.loads(config_path.read_text()) == {"theme": "dark", "apiToken": "abc"}
        manager.save_token("def", "keychain")
        assert manager.store.get("huntr-cli", ACCOUNT_API_TOKEN) == "def"
        assert manager.token_sources() == {"env": False, "clerk_session": False, "config": True, "keychain": True}
        print("  ✓ tokens saved, other config keys kept")

        manager.clear_token("keychain")
        assert manager.keychain_token() is None
        assert manager.config_file.get_token() == "abc"

        manager.clear_token()
        assert manager.config_file.get_token() is None
        assert json.loads(config_path.read_text()) == {"theme": "dark"}
        print("  ✓ clearing by location")


def test_config_file_tolerates_garbage():
    """Test that an unreadable config.json reads as empty."""
    print("\nTEST: ConfigFile with invalid JSON")
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "config.json"
        path.write_text("{not json")
        assert ConfigFile(path).get_token() is None
        path.write_text(json.dumps({"apiToken": 42}))
        assert ConfigFile(path).get_token() is None
    print("  ✓ no token, no exception")


def main():
    """Run all tests."""
    print("=" * 70)
    print("TOKEN MANAGER TEST SUITE")
    print("=" * 70)

    try:
        test_resolution_order()
        test_half_stored_session_is_ignored()
        test_no_credentials()
        test_save_and_clear_tokens()
        test_config_file_tolerates_garbage()

        print("\n" + "=" * 70)
        print("✓ ALL TESTS PASSED")
        print("=" * 70)
        return 0

    except AssertionError as e:
        print(f"\n✗ TEST FAILED: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
