"""Configuration loading utilities for Marathon Deployer."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from dotenv import load_dotenv

from .paths import DEFAULT_CONFIG_PATH, DEFAULT_DEFINITION_FILE, DEFAULT_RENDERED_FILE

# Load .env file if it exists
load_dotenv()

DEFAULT_TIMEOUT_SECONDS = 15 * 60
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 5.0


@dataclass(frozen=True)
class LabelEntry:
    """A label to set on the application; both parts may contain ``${VAR}``."""

    name: str
    value: str


@dataclass(frozen=True)
class EnvEntry:
    """An extra environment variable injected into the application."""

    name: str
    value: str


def _dedupe_uris(uris: Iterable[str]) -> Tuple[str, ...]:
    seen = set()
    result = []
    for uri in uris:
        if uri in seen:
            continue
        seen.add(uri)
        result.append(uri)
    return tuple(result)


def _last_wins(entries: Iterable[Any]) -> Tuple[Any, ...]:
    # keeps the position of the first occurrence, the value of the last
    by_name: Dict[str, Any] = {}
    for entry in entries:
        by_name[entry.name] = entry
    return tuple(by_name.values())


@dataclass(frozen=True)
class DeploymentConfig:
    """Overrides applied to one application definition before submission."""

    filename: str = DEFAULT_DEFINITION_FILE
    app_id: Optional[str] = None
    docker_image: Optional[str] = None
    force_update: bool = False
    inject_variables: bool = False
    wait_for_deploy: bool = False
    timeout: float = DEFAULT_TIMEOUT_SECONDS  # seconds
    uris: Tuple[str, ...] = ()
    labels: Tuple[LabelEntry, ...] = ()
    env: Tuple[EnvEntry, ...] = ()
    rendered_filename: Optional[str] = DEFAULT_RENDERED_FILE  # None disables rendering

    def __post_init__(self) -> None:
        if not self.filename or not self.filename.strip():
            object.__setattr__(self, "filename", DEFAULT_DEFINITION_FILE)
        if self.timeout < 0:
            raise ValueError(f"timeout must be >= 0, got {self.timeout}")
        object.__setattr__(self, "uris", _dedupe_uris(self.uris))
        object.__setattr__(self, "labels", _last_wins(self.labels))
        object.__setattr__(self, "env", _last_wins(self.env))

    @property
    def waits(self) -> bool:
        return self.wait_for_deploy and self.timeout > 0

    def with_overrides(self, **changes: Any) -> "DeploymentConfig":
        """Return a copy with `changes` applied; ``None`` values are ignored."""
        changes = {key: value for key, value in changes.items() if value is not None}
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "DeploymentConfig":
        payload = {k: v for k, v in payload.items() if not k.startswith("_")}
        kwargs: Dict[str, Any] = {}

        for key, aliases in (
            ("filename", ("filename", "file")),
            ("app_id", ("app_id", "appId", "appid")),
            ("docker_image", ("docker_image", "docker", "dockerImage")),
            ("force_update", ("force_update", "forceUpdate")),
            ("inject_variables", ("inject_variables", "injectVariables")),
            ("wait_for_deploy", ("wait_for_deploy", "waitForDeploy")),
            ("timeout", ("timeout",)),
            ("rendered_filename", ("rendered_filename", "renderedFilename")),
        ):
            for alias in aliases:
                if alias in payload:
                    kwargs[key] = payload[alias]
                    break

        if "timeout" in kwargs:
            kwargs["timeout"] = float(kwargs["timeout"])

        uris = payload.get("uris") or []
        kwargs["uris"] = tuple(
            item["uri"] if isinstance(item, dict) else str(item) for item in uris
        )
        kwargs["labels"] = tuple(LabelEntry(n, v) for n, v in _pairs(payload.get("labels")))
        kwargs["env"] = tuple(EnvEntry(n, v) for n, v in _pairs(payload.get("env")))
        return cls(**kwargs)


def _pairs(raw: Any) -> List[Tuple[str, str]]:
    """Accept ``{"a": "1"}`` or ``[{"name": "a", "value": "1"}]``."""
    if not raw:
        return []
    if isinstance(raw, dict):
        return [(str(k), str(v)) for k, v in raw.items()]
    pairs = []
    for item in raw:
        if not isinstance(item, dict) or "name" not in item:
            raise ValueError(f"Entry {item!r} has no 'name'")
        pairs.append((str(item["name"]), str(item.get("value", ""))))
    return pairs


def _settings(settings_cls: type, section: str, payload: Dict[str, Any]) -> Any:
    known = {f.name for f in fields(settings_cls)}
    for key in payload:
        if key not in known:
            raise ValueError(f"Unknown key '{key}' in '{section}' settings")
    return settings_cls(**{**settings_cls().__dict__, **payload})


@dataclass
class MarathonSettings:
    """Where and how to reach the orchestrator."""

    url: Optional[str] = None
    credentials_id: Optional[str] = None
    service_account_id: Optional[str] = None  # defaults to credentials_id
    credentials_file: Optional[str] = None
    auth_provider: str = "dcos"
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL

    def __post_init__(self) -> None:
        if self.url:
            self.url = self.url.rstrip("/")

    @property
    def login_credentials_id(self) -> Optional[str]:
        return self.service_account_id or self.credentials_id


@dataclass
class RetrySettings:
    """Bounded retry for deployment conflicts (HTTP 409)."""

    max_attempts: int = DEFAULT_RETRY_ATTEMPTS
    delay: float = DEFAULT_RETRY_DELAY


@dataclass
class AppConfig:
    """Top-level configuration."""

    marathon: MarathonSettings = field(default_factory=MarathonSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    deployments: List[DeploymentConfig] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        marathon_payload = payload.get("marathon", {}) or {}
        retry_payload = payload.get("retry", {}) or {}
        deployments_payload = payload.get("deployments", []) or []

        # keys starting with "_" are comments
        marathon_payload = {k: v for k, v in marathon_payload.items() if not k.startswith("_")}
        retry_payload = {k: v for k, v in retry_payload.items() if not k.startswith("_")}

        return cls(
            marathon=_settings(MarathonSettings, "marathon", marathon_payload),
            retry=_settings(RetrySettings, "retry", retry_payload),
            deployments=[DeploymentConfig.from_dict(item) for item in deployments_payload],
        )


def _apply_environment(config: AppConfig) -> AppConfig:
    env_url = os.getenv("MARATHON_DEPLOYER_URL")
    if env_url:
        config.marathon.url = env_url.rstrip("/")

    env_credentials = os.getenv("MARATHON_DEPLOYER_CREDENTIALS_ID")
    if env_credentials:
        config.marathon.credentials_id = env_credentials

    env_service_account = os.getenv("MARATHON_DEPLOYER_SERVICE_ACCOUNT_ID")
    if env_service_account:
        config.marathon.service_account_id = env_service_account

    env_credentials_file = os.getenv("MARATHON_DEPLOYER_CREDENTIALS_FILE")
    if env_credentials_file:
        config.marathon.credentials_file = env_credentials_file

    return config


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    An explicit `path` must exist; the default location is optional and plain
    defaults are used when it is absent.

    Environment variables (higher priority than config file):
    - MARATHON_DEPLOYER_URL: orchestrator base URL
    - MARATHON_DEPLOYER_CREDENTIALS_ID: credential used for API calls
    - MARATHON_DEPLOYER_SERVICE_ACCOUNT_ID: credential holding the service account JSON
    - MARATHON_DEPLOYER_CREDENTIALS_FILE: JSON credential store location
    """
    if path:
        candidate = Path(path)
        if not candidate.is_file():
            raise FileNotFoundError(f"Could not find configuration file: {candidate}")
    else:
        candidate = DEFAULT_CONFIG_PATH

    if candidate.is_file():
        with candidate.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        config = AppConfig.from_dict(data)
    else:
        config = AppConfig()

    return _apply_environment(config)
