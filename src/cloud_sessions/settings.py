"""Settings loaded from ``config/settings.yaml``.

Every key is optional; anything missing falls back to the defaults below.
``VAULT_ADDR`` and ``CLOUD_SESSIONS_HOME`` in the environment override the
Vault address and the directory that holds the workspace file.
"""

from __future__ import annotations

import dataclasses
import os
import pathlib
from typing import Any

import yaml

DEFAULT_CONFIG_PATH = pathlib.Path(__file__).resolve().parents[2] / "config" / "settings.yaml"

DEFAULT_AWS_REGIONS = (
    "us-east-1", "us-east-2", "us-west-1", "us-west-2",
    "ca-central-1", "sa-east-1",
    "eu-west-1", "eu-west-2", "eu-west-3", "eu-central-1", "eu-north-1", "eu-south-1",
    "ap-south-1", "ap-northeast-1", "ap-northeast-2", "ap-southeast-1", "ap-southeast-2",
    "me-south-1", "af-south-1",
)

DEFAULT_AZURE_LOCATIONS = (
    "eastus", "eastus2", "westus", "westus2", "centralus", "northeurope",
    "westeurope", "uksouth", "francecentral", "germanywestcentral",
    "southeastasia", "japaneast", "australiaeast", "brazilsouth",
)


class SettingsError(Exception):
    """Raised when the settings file is missing or malformed."""


@dataclasses.dataclass(frozen=True)
class Settings:
    vault_addr: str = "http://127.0.0.1:8200"
    auth_method: str = "userpass"
    aws_mount: str = "aws"
    azure_mount: str = "azure"
    kv_mount: str = "secret"
    app_id: str = "cloud-sessions"
    workspace_path: pathlib.Path = pathlib.Path("~/.cloud-sessions/workspace.enc").expanduser()
    aws_credentials_file: pathlib.Path = pathlib.Path("~/.aws/credentials").expanduser()
    azure_principal_file: pathlib.Path = pathlib.Path(
        "~/.azure/service_principal_entries.json"
    ).expanduser()
    aws_regions: tuple[str, ...] = DEFAULT_AWS_REGIONS
    azure_locations: tuple[str, ...] = DEFAULT_AZURE_LOCATIONS
    sso_portal_timeout: float = 30.0
    max_retries: int = 3
    base_delay: float = 1.0
    default_profile_name: str = "default"


def load_settings(path: str | pathlib.Path | None = None) -> Settings:
    """Read settings from *path* (or the bundled default file when present).

    Raises ``SettingsError`` if an explicit *path* does not exist or the file
    is not a YAML mapping.
    """
    data: dict[str, Any] = {}
    if path is not None:
        config_path = pathlib.Path(path).expanduser()
        if not config_path.exists():
            raise SettingsError(f"Settings file not found: {config_path}")
        data = _read_yaml(config_path)
    elif DEFAULT_CONFIG_PATH.exists():
        data = _read_yaml(DEFAULT_CONFIG_PATH)

    vault_cfg = data.get("vault") or {}
    workspace_cfg = data.get("workspace") or {}
    aws_cfg = data.get("aws") or {}
    azure_cfg = data.get("azure") or {}
    lifecycle_cfg = data.get("lifecycle") or {}
    defaults = Settings()

    workspace_path = pathlib.Path(workspace_cfg.get("path", defaults.workspace_path)).expanduser()
    home_override = os.environ.get("CLOUD_SESSIONS_HOME")
    if home_override:
        workspace_path = pathlib.Path(home_override).expanduser() / workspace_path.name

    return Settings(
        vault_addr=os.environ.get("VAULT_ADDR") or vault_cfg.get("address", defaults.vault_addr),
        auth_method=vault_cfg.get("auth_method", defaults.auth_method),
        aws_mount=vault_cfg.get("aws_mount", defaults.aws_mount),
        azure_mount=vault_cfg.get("azure_mount", defaults.azure_mount),
        kv_mount=vault_cfg.get("kv_mount", defaults.kv_mount),
        app_id=workspace_cfg.get("app_id", defaults.app_id),
        workspace_path=workspace_path,
        aws_credentials_file=pathlib.Path(
            aws_cfg.get("credentials_file", defaults.aws_credentials_file)
        ).expanduser(),
        azure_principal_file=pathlib.Path(
            azure_cfg.get("principal_file", defaults.azure_principal_file)
        ).expanduser(),
        aws_regions=tuple(aws_cfg.get("regions", defaults.aws_regions)),
        azure_locations=tuple(azure_cfg.get("locations", defaults.azure_locations)),
        sso_portal_timeout=float(aws_cfg.get("sso_portal_timeout", defaults.sso_portal_timeout)),
        max_retries=int(lifecycle_cfg.get("max_retries", defaults.max_retries)),
        base_delay=float(lifecycle_cfg.get("base_delay", defaults.base_delay)),
        default_profile_name=data.get("default_profile_name", defaults.default_profile_name),
    )


def _read_yaml(path: pathlib.Path) -> dict[str, Any]:
    with open(path) as fh:
        data = yaml.safe_load(fh)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SettingsError(f"Settings file must contain a mapping: {path}")
    return data
