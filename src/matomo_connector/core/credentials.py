"""Credential loading and resolution for the Matomo connector.

The reporting API needs two values: the base URL of the Matomo instance and
an auth token. They come from, in priority order, environment variables, a
JSON config file, or a ``.env`` file. The dispatcher only sees the
:class:`CredentialStore` protocol so tests can hand it fixed values.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Protocol

from dotenv import dotenv_values, load_dotenv

from matomo_connector.core.constants import CREDENTIAL_FIELDS, DEFAULT_CONFIG_FILE, ENV_VAR_MAPPING
from matomo_connector.core.exceptions import CredentialSourceError


def normalize_credential_value(value: Any) -> str:
    """Normalize a credential value consistently across all sources.

    Handles stripping whitespace and surrounding quotes from values.
    """
    if value is None:
        return ""
    s = str(value).strip()
    if len(s) >= 2 and ((s.startswith('"') and s.endswith('"')) or (s.startswith("'") and s.endswith("'"))):
        s = s[1:-1]
    return s


def filter_credentials(credentials: dict[str, Any]) -> dict[str, str]:
    """Keep only known credential fields with non-empty normalized values."""
    filtered = {k: normalize_credential_value(v) for k, v in credentials.items() if k in CREDENTIAL_FIELDS["all"]}
    return {k: v for k, v in filtered.items() if v}


def bootstrap_dotenv(logger: logging.Logger, dotenv_path: str | Path | None = None) -> bool:
    """Load a ``.env`` file into ``os.environ`` without overriding existing values."""
    try:
        loaded = load_dotenv(dotenv_path=dotenv_path, override=False)
    except OSError as e:
        logger.debug(f"Failed to load .env file: {e}")
        return False
    logger.debug(".env file found and loaded" if loaded else ".env file not found")
    return loaded


# ==================== CREDENTIAL LOADERS ====================


class CredentialLoader(ABC):
    """Abstract base class for loading credentials from one source."""

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Return the name of this credential source."""

    def load(self, logger: logging.Logger) -> dict[str, str] | None:
        """Load credentials, returning None when the source is absent or unreadable."""
        try:
            creds = self._load_impl(logger)
        except (OSError, json.JSONDecodeError) as e:
            logger.debug(f"Failed to load credentials from {self.source_name}: {e}")
            return None
        if not creds:
            return None
        return filter_credentials(creds) or None

    @abstractmethod
    def _load_impl(self, logger: logging.Logger) -> dict[str, Any] | None:
        """Return raw credentials, or None if the source is not available."""


class JsonFileCredentialLoader(CredentialLoader):
    """Load credentials from a JSON file like ``{"instance_url": ..., "token_auth": ...}``."""

    def __init__(self, file_path: Path):
        self.file_path = file_path

    @property
    def source_name(self) -> str:
        return f"config:{self.file_path.name}"

    def _load_impl(self, logger: logging.Logger) -> dict[str, Any] | None:
        if not self.file_path.exists():
            return None
        with open(self.file_path) as f:
            config = json.load(f)
        return config if isinstance(config, dict) else None


class DotenvCredentialLoader(CredentialLoader):
    """Load credentials from a ``.env`` file using the environment variable names."""

    def __init__(self, file_path: Path):
        self.file_path = file_path

    @property
    def source_name(self) -> str:
        return f"dotenv:{self.file_path.name}"

    def _load_impl(self, logger: logging.Logger) -> dict[str, Any] | None:
        if not self.file_path.exists():
            return None
        values = dotenv_values(self.file_path)
        return {field: values.get(env_var) for field, env_var in ENV_VAR_MAPPING.items() if values.get(env_var)}


class EnvironmentCredentialLoader(CredentialLoader):
    """Load credentials from environment variables."""

    @property
    def source_name(self) -> str:
        return "environment"

    def _load_impl(self, logger: logging.Logger) -> dict[str, Any] | None:
        credentials = {}
        for field, env_var in ENV_VAR_MAPPING.items():
            value = os.environ.get(env_var)
            if value and value.strip():
                credentials[field] = value.strip()
        return credentials or None


# ==================== CREDENTIAL RESOLVER ====================


class CredentialResolver:
    """Resolves credentials using a priority-based strategy.

    Priority order:
    1. Environment variables (MATOMO_URL, MATOMO_TOKEN)
    2. JSON configuration file
    3. ``.env`` file

    A source only wins if it provides every required field.
    """

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger(__name__)

    def resolve(
        self, config_file: str | Path | None = None, dotenv_file: str | Path = ".env"
    ) -> tuple[dict[str, str], str]:
        """Resolve credentials following priority order.

        Returns:
            Tuple of (credentials, source_name)

        Raises:
            CredentialSourceError: If no source yields complete credentials
        """
        loaders: list[CredentialLoader] = [
            EnvironmentCredentialLoader(),
            JsonFileCredentialLoader(Path(config_file or DEFAULT_CONFIG_FILE)),
            DotenvCredentialLoader(Path(dotenv_file)),
        ]
        for loader in loaders:
            creds = loader.load(self.logger)
            if not creds:
                continue
            missing = [f for f in CREDENTIAL_FIELDS["required"] if f not in creds]
            if missing:
                self.logger.debug(f"Skipping {loader.source_name}: missing {', '.join(missing)}")
                continue
            self.logger.debug(f"Using credentials from {loader.source_name}")
            return creds, loader.source_name

        raise CredentialSourceError(
            "No valid credentials found",
            source="all",
            reason="Checked environment variables, config file, and .env file",
            details=f"Set {', '.join(ENV_VAR_MAPPING.values())} or provide a config file",
        )


# ==================== CREDENTIAL STORES ====================


class CredentialStore(Protocol):
    """Supplies the Matomo base URL and auth token to the API client."""

    def get_instance_url(self) -> str | None:
        """Return the configured Matomo base URL, if any."""

    def get_token(self) -> str | None:
        """Return the configured auth token, if any."""


class StaticCredentialStore:
    """Credential store holding fixed values."""

    def __init__(self, instance_url: str | None = None, token_auth: str | None = None):
        self._instance_url = instance_url
        self._token = token_auth

    def get_instance_url(self) -> str | None:
        return self._instance_url

    def get_token(self) -> str | None:
        return self._token


class ResolvedCredentialStore:
    """Credential store backed by :class:`CredentialResolver`, resolved on first use."""

    def __init__(self, resolver: CredentialResolver | None = None, config_file: str | Path | None = None):
        self._resolver = resolver or CredentialResolver()
        self._config_file = config_file
        self._credentials: dict[str, str] | None = None
        self.source: str | None = None

    def _resolve(self) -> dict[str, str]:
        if self._credentials is None:
            self._credentials, self.source = self._resolver.resolve(config_file=self._config_file)
        return self._credentials

    def get_instance_url(self) -> str | None:
        return self._resolve().get("instance_url")

    def get_token(self) -> str | None:
        return self._resolve().get("token_auth")
