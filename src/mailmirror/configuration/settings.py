"""Monitor configuration with validation, environment overrides and YAML storage.

The configuration file lives at ``~/.mailmirror/config/mailmirror.yaml`` by
default and is optional: a missing file yields the defaults. Environment
variables prefixed with ``MAILMIRROR_`` override individual monitor settings
(``MAILMIRROR_DEFAULT_INTERVAL_MS=60000``).
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from mailmirror.audit import AuditEvent, AuditLogger
from mailmirror.errors import ConfigurationError


logger = logging.getLogger(__name__)

ENV_PREFIX = "MAILMIRROR_"
DEFAULT_CONFIG_PATH = Path.home() / ".mailmirror" / "config" / "mailmirror.yaml"


class MonitorSettings(BaseModel):
    """Polling and bridge settings shared by every monitored folder.

    Attributes:
        default_interval_ms: Interval used when a folder does not set its own
        min_interval_ms: Smallest interval accepted by the registry
        max_interval_ms: Largest interval accepted by the registry
        max_backoff_ms: Cap on the delay after repeated scan failures
        max_items: Maximum entries requested per snapshot
        bridge_timeout_seconds: Hard timeout of one bridge call
        powershell_executable: Interpreter used by the PowerShell bridge
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    default_interval_ms: int = Field(
        default=30000,
        ge=1,
        description="Default polling interval"
    )
    min_interval_ms: int = Field(
        default=100,
        ge=1,
        description="Smallest accepted polling interval"
    )
    max_interval_ms: int = Field(
        default=86_400_000,
        ge=1,
        description="Largest accepted polling interval"
    )
    max_backoff_ms: int = Field(
        default=300000,
        ge=1,
        description="Cap on the backoff delay"
    )
    max_items: int = Field(
        default=2000,
        ge=1,
        le=100000,
        description="Maximum entries requested per snapshot"
    )
    bridge_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=3600,
        description="Hard timeout of one bridge call"
    )
    powershell_executable: str = Field(
        default="powershell",
        min_length=1,
        description="PowerShell interpreter"
    )

    @model_validator(mode="after")
    def _check_interval_bounds(self) -> "MonitorSettings":
        if self.min_interval_ms > self.max_interval_ms:
            raise ValueError("min_interval_ms must not exceed max_interval_ms")
        if not self.min_interval_ms <= self.default_interval_ms <= self.max_interval_ms:
            raise ValueError("default_interval_ms must lie within [min_interval_ms, max_interval_ms]")
        return self

    def interval_in_bounds(self, interval_ms: int) -> bool:
        return self.min_interval_ms <= interval_ms <= self.max_interval_ms


class FolderConfig(BaseModel):
    """One configured folder.

    Attributes:
        path: Folder path in bridge addressing
        name: Display name
        category: Free-form grouping used by the host
        enabled: Start monitoring this folder on startup
        interval_ms: Per-folder interval, ``None`` for the default
    """

    model_config = ConfigDict(extra="forbid")

    path: str = Field(..., min_length=1, description="Folder path")
    name: Optional[str] = Field(default=None, description="Display name")
    category: Optional[str] = Field(default=None, description="Folder category")
    enabled: bool = Field(default=True, description="Monitor on startup")
    interval_ms: Optional[int] = Field(default=None, ge=1, description="Polling interval override")

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Reject whitespace-only paths."""
        if not v.strip():
            raise ValueError("folder path must not be blank")
        return v

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        return self.path.rstrip("\\").rsplit("\\", 1)[-1]


class MailMirrorConfig(BaseModel):
    """Top-level configuration file model."""

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    version: int = Field(default=1, ge=1, description="Configuration schema version")
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)
    folders: List[FolderConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_paths(self) -> "MailMirrorConfig":
        seen = set()
        for folder in self.folders:
            if folder.path in seen:
                raise ValueError(f"folder configured twice: {folder.path}")
            seen.add(folder.path)
        return self


def _format_validation_error(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(loc) for loc in err['loc']) or '<root>'}: {err['msg']}"
        for err in exc.errors()
    )


def apply_env_overrides(
    data: Dict[str, Any], environ: Optional[Mapping[str, str]] = None
) -> Dict[str, Any]:
    """Overlay ``MAILMIRROR_<SETTING>`` variables onto the ``monitor`` section.

    Values are passed through as strings; pydantic coerces them.
    """
    env = os.environ if environ is None else environ
    overrides = {}
    for field_name in MonitorSettings.model_fields:
        value = env.get(f"{ENV_PREFIX}{field_name.upper()}")
        if value is not None and value != "":
            overrides[field_name] = value
    if not overrides:
        return data

    merged = dict(data)
    monitor = dict(merged.get("monitor") or {})
    monitor.update(overrides)
    merged["monitor"] = monitor
    logger.debug(
        "Applied environment overrides",
        extra={"settings": sorted(overrides)},
    )
    return merged


class ConfigurationManager:
    """Loads and saves the monitor configuration file.

    Attributes:
        config_path: Path to configuration file
        audit_logger: Optional audit logger for configuration changes
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        audit_logger: Optional[AuditLogger] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """Initialize configuration manager.

        Args:
            config_path: Path to config file (default: ~/.mailmirror/config/mailmirror.yaml)
            audit_logger: Optional audit logger for tracking config changes
            environ: Environment used for overrides (default: ``os.environ``)
        """
        self._config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        self._audit = audit_logger
        self._environ = environ
        self._config: Optional[MailMirrorConfig] = None

    @property
    def config_path(self) -> Path:
        return self._config_path

    @property
    def config(self) -> Optional[MailMirrorConfig]:
        """Last loaded configuration, if any."""
        return self._config

    def load(self) -> MailMirrorConfig:
        """Load and validate configuration.

        Returns:
            Validated configuration, defaults when the file does not exist

        Raises:
            ConfigurationError: If the file cannot be parsed or is invalid
        """
        using_defaults = not self._config_path.exists()
        data: Dict[str, Any] = {}
        if not using_defaults:
            try:
                with open(self._config_path, encoding="utf-8") as f:
                    loaded = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise ConfigurationError(
                    f"Configuration file is not valid YAML: {exc}",
                    details={"config_path": str(self._config_path)},
                ) from exc
            if loaded is None:
                loaded = {}
            if not isinstance(loaded, dict):
                raise ConfigurationError(
                    "Configuration file must contain a mapping",
                    details={"config_path": str(self._config_path)},
                )
            data = loaded

        data = apply_env_overrides(data, self._environ)
        try:
            self._config = MailMirrorConfig(**data)
        except ValidationError as exc:
            raise ConfigurationError(
                f"Invalid configuration: {_format_validation_error(exc)}",
                details={"config_path": str(self._config_path)},
            ) from exc

        logger.info(
            "Configuration loaded",
            extra={
                "config_path": str(self._config_path),
                "using_defaults": using_defaults,
                "folders": len(self._config.folders),
            },
        )
        self._record("load_configuration", {"using_defaults": using_defaults})
        return self._config

    def save(self, config: MailMirrorConfig) -> None:
        """Save configuration to file.

        Args:
            config: Configuration to save
        """
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        data = config.model_dump(mode="json")
        with open(self._config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        self._config = config
        self._record("save_configuration", {"folders": len(config.folders)})

    def validate(self, config_path: Optional[Path] = None) -> List[str]:
        """Validate a configuration file without loading it.

        Returns:
            List of validation errors (empty if valid)
        """
        path = Path(config_path) if config_path else self._config_path
        if not path.exists():
            return [f"Configuration file not found: {path}"]

        errors: List[str] = []
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            MailMirrorConfig(**data)
        except ValidationError as exc:
            for error in exc.errors():
                loc = ".".join(str(part) for part in error["loc"])
                errors.append(f"{loc}: {error['msg']}")
        except (OSError, yaml.YAMLError, TypeError) as exc:
            errors.append(f"Failed to load configuration: {exc}")
        return errors

    def _record(self, action: str, metadata: Dict[str, Any]) -> None:
        if self._audit is None:
            return
        try:
            self._audit.record(
                AuditEvent(
                    source="configuration_manager",
                    action=action,
                    status="succeeded",
                    timestamp=datetime.utcnow(),
                    metadata=metadata,
                )
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Failed to write audit event",
                extra={"action": action, "error": str(exc)},
            )


def load_folders_json(path: Path) -> List[FolderConfig]:
    """Read a ``folders-config.json`` mapping of folder path to name/category.

    Example file::

        {"\\\\me@example.com\\Inbox\\Clients": {"name": "Clients", "category": "work"}}

    Raises:
        ConfigurationError: If the file is missing, malformed or has invalid entries
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError as exc:
        raise ConfigurationError(
            f"Folder list not found: {path}", details={"path": str(path)}
        ) from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(
            f"Folder list is not valid JSON: {exc}", details={"path": str(path)}
        ) from exc

    if not isinstance(raw, dict):
        raise ConfigurationError(
            "Folder list must map folder paths to settings", details={"path": str(path)}
        )

    folders: List[FolderConfig] = []
    for folder_path, settings in raw.items():
        settings = settings or {}
        if not isinstance(settings, dict):
            raise ConfigurationError(
                f"Settings for {folder_path} must be an object", details={"path": str(path)}
            )
        try:
            folders.append(FolderConfig(path=folder_path, **settings))
        except (ValidationError, TypeError) as exc:
            message = (
                _format_validation_error(exc) if isinstance(exc, ValidationError) else str(exc)
            )
            raise ConfigurationError(
                f"Invalid settings for {folder_path}: {message}",
                details={"path": str(path)},
            ) from exc
    return folders


__all__ = [
    "ENV_PREFIX",
    "DEFAULT_CONFIG_PATH",
    "MonitorSettings",
    "FolderConfig",
    "MailMirrorConfig",
    "ConfigurationManager",
    "apply_env_overrides",
    "load_folders_json",
]
