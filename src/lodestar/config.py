from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from lodestar.constants import DEFAULT_REMOTE_CHECK_FREQUENCY_SECONDS
from lodestar.events import Event
from lodestar.exceptions import ConfigError
from lodestar.logging import get_logger

__all__ = [
    "ConfigurationChangeEvent",
    "ConfigurationReader",
    "DeleteConfig",
    "FilesConfig",
    "LodestarConfig",
    "RemoteChangesConfig",
    "SourceControlConfig",
    "UpdateConfig",
    "get_user_config_path",
    "load_config",
]

logger = get_logger(__name__)

DeletedFilesAction = Literal["none", "remove", "prompt"]


class UpdateConfig(BaseModel):
    """Settings for ``svn update``."""

    ignore_externals: bool = True


class DeleteConfig(BaseModel):
    """Settings for files deleted outside of svn.

    Attributes:
        action_for_deleted_files: What to do with files that show up as
            ``missing`` after being deleted from disk: ``remove`` them from
            version control, ``prompt`` the user, or do ``none``.
        ignored_rules_for_deleted_files: Globs of deleted files to leave alone.
    """

    action_for_deleted_files: DeletedFilesAction = "prompt"
    ignored_rules_for_deleted_files: list[str] = Field(default_factory=list)


class RemoteChangesConfig(BaseModel):
    """Settings for the remote change poller."""

    check_frequency: int = Field(default=DEFAULT_REMOTE_CHECK_FREQUENCY_SECONDS, ge=0)


class SourceControlConfig(BaseModel):
    """Settings for how status is grouped and counted.

    Attributes:
        combine_external_if_same_server: Show externals that live in the
            same repository as regular changes.
        hide_unversioned: Do not show unversioned files at all.
        ignore: Globs of unversioned files to hide.
        ignore_on_status_count: Changelists left out of the badge count.
        count_unversioned: Include unversioned files in the badge count.
    """

    combine_external_if_same_server: bool = False
    hide_unversioned: bool = False
    ignore: list[str] = Field(default_factory=list)
    ignore_on_status_count: list[str] = Field(
        default_factory=lambda: ["ignore-on-commit"]
    )
    count_unversioned: bool = False


class FilesConfig(BaseModel):
    """Workspace file settings; ``exclude`` maps a glob to enabled/disabled."""

    exclude: dict[str, bool] = Field(
        default_factory=lambda: {
            "**/.git": True,
            "**/.svn": True,
            "**/.hg": True,
            "**/CVS": True,
            "**/.DS_Store": True,
        }
    )


class YamlConfigSource(PydanticBaseSettingsSource):
    """Custom settings source that loads from YAML files."""

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        yaml_file: Path | None = None,
    ):
        super().__init__(settings_cls)
        self.yaml_file = yaml_file
        self._config_data: dict[str, Any] = {}
        if yaml_file and yaml_file.exists():
            try:
                with open(yaml_file) as f:
                    loaded = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(
                    message=f"Invalid YAML in {yaml_file}: {e}",
                    field=None,
                    value=None,
                ) from e
            if loaded is None:
                logger.warning("config_file_empty", path=str(yaml_file))
            elif isinstance(loaded, dict):
                self._config_data = loaded
            else:
                raise ConfigError(
                    message=f"Config file {yaml_file} must contain a mapping",
                    field=None,
                    value=type(loaded).__name__,
                )

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        if field_name in self._config_data:
            return self._config_data[field_name], field_name, False
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        return self._config_data


class LodestarConfig(BaseSettings):
    """Root configuration object containing all Lodestar settings."""

    model_config = SettingsConfigDict(
        env_prefix="LODESTAR_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    autorefresh: bool = True
    update: UpdateConfig = Field(default_factory=UpdateConfig)
    delete: DeleteConfig = Field(default_factory=DeleteConfig)
    remote_changes: RemoteChangesConfig = Field(default_factory=RemoteChangesConfig)
    source_control: SourceControlConfig = Field(default_factory=SourceControlConfig)
    files: FilesConfig = Field(default_factory=FilesConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize the order of settings sources.

        Priority (highest to lowest):
        1. Init arguments
        2. Environment variables (LODESTAR_*)
        3. Project YAML config (./lodestar.yaml)
        4. User YAML config (~/.config/lodestar/config.yaml)
        5. Defaults
        """
        return (
            init_settings,
            env_settings,
            YamlConfigSource(settings_cls, Path.cwd() / "lodestar.yaml"),
            YamlConfigSource(settings_cls, get_user_config_path()),
        )


def get_user_config_path() -> Path:
    """Get the path to the user configuration file.

    Returns:
        Path to ~/.config/lodestar/config.yaml
    """
    return Path.home() / ".config" / "lodestar" / "config.yaml"


def load_config(**overrides: Any) -> LodestarConfig:
    """Load configuration with hierarchy: defaults -> user -> project -> env.

    Args:
        **overrides: Top-level values that win over every other source.

    Returns:
        LodestarConfig instance with merged configuration

    Raises:
        ConfigError: If configuration is invalid
    """
    if not (Path.cwd() / "lodestar.yaml").exists():
        logger.debug("project_config_not_found")

    try:
        return LodestarConfig(**overrides)
    except ValidationError as e:
        first_error = e.errors()[0]
        field = ".".join(str(loc) for loc in first_error["loc"])
        raise ConfigError(
            message=f"Invalid configuration: {first_error['msg']}",
            field=field,
            value=first_error.get("input"),
        ) from e


# =============================================================================
# Runtime access
# =============================================================================


def _flatten(data: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    flat: dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict) and key != "exclude":
            flat.update(_flatten(value, f"{dotted}."))
        else:
            flat[dotted] = value
    return flat


@dataclass(frozen=True, slots=True)
class ConfigurationChangeEvent:
    """Describes which dotted keys changed in a configuration update.

    Attributes:
        changed_keys: Fully-qualified keys whose values differ.
    """

    changed_keys: frozenset[str]

    def affects_configuration(self, key: str) -> bool:
        """Return True if *key*, or any key below or above it, changed."""
        return any(
            changed == key
            or changed.startswith(f"{key}.")
            or key.startswith(f"{changed}.")
            for changed in self.changed_keys
        )


class ConfigurationReader:
    """Live view over a :class:`LodestarConfig`.

    Components read settings through dotted keys each time they need them,
    so a call to :meth:`update` takes effect without rewiring anything.

    Example:
        ```python
        reader = ConfigurationReader(load_config())
        reader.get("remote_changes.check_frequency", 300)
        ```
    """

    def __init__(self, config: LodestarConfig | None = None) -> None:
        self._config = config if config is not None else LodestarConfig()
        self.on_did_change: Event[ConfigurationChangeEvent] = Event("configuration")

    @property
    def config(self) -> LodestarConfig:
        return self._config

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value at dotted *key*, or *default* if it is unknown."""
        node: Any = self._config
        for part in key.split("."):
            if isinstance(node, BaseModel):
                if part not in type(node).model_fields:
                    return default
                node = getattr(node, part)
            elif isinstance(node, dict) and part in node:
                node = node[part]
            else:
                return default
        return default if node is None else node

    def update(self, config: LodestarConfig) -> ConfigurationChangeEvent:
        """Swap in *config* and notify listeners of the keys that changed."""
        before = _flatten(self._config.model_dump())
        after = _flatten(config.model_dump())
        changed = frozenset(
            key
            for key in before.keys() | after.keys()
            if before.get(key) != after.get(key)
        )
        self._config = config
        event = ConfigurationChangeEvent(changed)
        if changed:
            logger.debug("configuration_changed", keys=sorted(changed))
            self.on_did_change.fire(event)
        return event
