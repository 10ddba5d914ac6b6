"""API key resolution: OS keyring entry under service "tony", else the environment (.env included)."""

import logging
import os

import keyring
from keyring.errors import KeyringError

logger = logging.getLogger(__name__)
SERVICE_NAME = "tony"


def _from_keyring(name: str) -> str | None:
    try:
        return keyring.get_password(SERVICE_NAME, name) or None
    except KeyringError as e:
        logger.debug("keyring unavailable for %s (%s), using environment", name, e)
        return None


def get_secret(name: str) -> str | None:
    """Keyring value if set, else os.environ[name], else None."""
    return _from_keyring(name) or os.environ.get(name) or None
