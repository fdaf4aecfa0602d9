"""OS keychain integration for provider credentials."""

from __future__ import annotations

import logging

import keyring

logger = logging.getLogger(__name__)

_SERVICE_NAME = "cds-order-validation"

# Keychain entry names, keyed by provider.
PROVIDER_KEY_NAMES: dict[str, str] = {
    "claude": "anthropic_api_key",
    "grok": "grok_api_key",
    "openai": "openai_api_key",
}


class KeychainManager:
    """Store and retrieve API keys via OS keychain, with in-memory fallback.

    Headless hosts often have no keyring backend; keys set there live only
    for the life of the process.
    """

    def __init__(self) -> None:
        self._available = False
        self._fallback: dict[str, str] = {}
        try:
            keyring.get_credential(_SERVICE_NAME, None)
            self._available = True
            logger.info("OS keychain is available")
        except Exception:
            logger.warning(
                "OS keychain unavailable; API keys will be stored in memory only"
            )

    @property
    def available(self) -> bool:
        return self._available

    def get_key(self, name: str) -> str | None:
        if self._available:
            try:
                value = keyring.get_password(_SERVICE_NAME, name)
                if value is not None:
                    return value
            except Exception:
                logger.warning("Failed to read %s from keychain", name)
        return self._fallback.get(name)

    def set_key(self, name: str, value: str) -> None:
        if self._available:
            try:
                keyring.set_password(_SERVICE_NAME, name, value)
                return
            except Exception:
                logger.warning("Failed to write to keychain; using fallback")
        self._fallback[name] = value

    def delete_key(self, name: str) -> None:
        if self._available:
            try:
                keyring.delete_password(_SERVICE_NAME, name)
            except Exception:
                logger.debug("No keychain entry for %s", name)
        self._fallback.pop(name, None)

    # Convenience methods

    def get_provider_key(self, provider: str) -> str | None:
        name = PROVIDER_KEY_NAMES.get(provider)
        return self.get_key(name) if name else None

    def set_provider_key(self, provider: str, value: str) -> None:
        name = PROVIDER_KEY_NAMES.get(provider)
        if name is None:
            raise ValueError(f"Unknown provider: {provider}")
        self.set_key(name, value)

    def get_aws_access_key(self) -> str | None:
        return self.get_key("aws_access_key_id")

    def set_aws_access_key(self, value: str) -> None:
        self.set_key("aws_access_key_id", value)

    def get_aws_secret_key(self) -> str | None:
        return self.get_key("aws_secret_access_key")

    def set_aws_secret_key(self, value: str) -> None:
        self.set_key("aws_secret_access_key", value)


_keychain_instance: KeychainManager | None = None


def get_keychain() -> KeychainManager:
    """Return the module-level KeychainManager singleton."""
    global _keychain_instance
    if _keychain_instance is None:
        _keychain_instance = KeychainManager()
    return _keychain_instance
