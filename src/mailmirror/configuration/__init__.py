"""Configuration models and file handling."""

from .settings import (
    DEFAULT_CONFIG_PATH,
    ENV_PREFIX,
    ConfigurationManager,
    FolderConfig,
    MailMirrorConfig,
    MonitorSettings,
    apply_env_overrides,
    load_folders_json,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "ENV_PREFIX",
    "ConfigurationManager",
    "FolderConfig",
    "MailMirrorConfig",
    "MonitorSettings",
    "apply_env_overrides",
    "load_folders_json",
]
