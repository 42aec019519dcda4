"""Configuration loading utilities for the offboarding toolkit."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG_PATH = Path("config/settings.yaml")
ENV_CONFIG_PATH = "OFFBOARD_CONFIG"
ENV_PREFIX = "OFFBOARD_"

DEFAULT_INTERNAL_MESSAGE = (
    "{display_name} is no longer with the organisation. "
    "Please contact {forward_to} for assistance."
)
DEFAULT_EXTERNAL_MESSAGE = (
    "Thank you for your message. {display_name} is no longer with the organisation "
    "and this mailbox is not monitored."
)


@dataclass
class GraphConfig:
    """Settings for the Microsoft Graph (Entra ID) integration."""

    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    base_url: str = "https://graph.microsoft.com/v1.0"
    timeout: int = 30

    @property
    def has_credentials(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)


@dataclass
class ExchangeConfig:
    """Settings for Exchange Online PowerShell with certificate authentication."""

    app_id: Optional[str] = None
    organization: Optional[str] = None
    certificate_thumbprint: Optional[str] = None
    powershell_path: str = "pwsh"
    timeout: int = 120

    @property
    def has_credentials(self) -> bool:
        return bool(self.app_id and self.organization and self.certificate_thumbprint)


@dataclass
class OffboardingConfig:
    """Behavioural switches for the offboarding workflow."""

    internal_message: str = DEFAULT_INTERNAL_MESSAGE
    external_message: str = DEFAULT_EXTERNAL_MESSAGE
    credential_length: int = 24
    hide_from_address_lists: bool = True
    deliver_to_mailbox_and_forward: bool = True
    skip_unmanageable_groups: bool = True
    retain_licenses_on_conversion_failure: bool = False


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "text"


@dataclass
class AppConfig:
    """Aggregate configuration for the application."""

    graph: GraphConfig = field(default_factory=GraphConfig)
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    offboarding: OffboardingConfig = field(default_factory=OffboardingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


class ConfigurationError(RuntimeError):
    """Raised when the configuration file or environment variables are invalid."""


def _load_from_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(
            f"Configuration file '{path}' does not exist. "
            "Create it or configure the tool through OFFBOARD_* environment variables."
        )
    with path.open("r", encoding="utf-8") as file:
        try:
            payload = yaml.safe_load(file) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Configuration file '{path}' is not valid YAML: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Configuration file '{path}' must contain a mapping.")
    return payload


def _apply_environment_overrides(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Override configuration values with environment variables."""

    overrides: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX) or key == ENV_CONFIG_PATH:
            continue
        path = key[len(ENV_PREFIX) :].lower().split("__")
        node = overrides
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value

    if overrides:
        config_dict = _deep_merge(config_dict, overrides)
    return config_dict


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            result[key] = _deep_merge(base[key], value)
        else:
            result[key] = value
    return result


def _resolve_config_path(path: Optional[Path] = None) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.environ.get(ENV_CONFIG_PATH)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def _load_config_dict(path: Optional[Path] = None) -> Dict[str, Any]:
    resolved_path = _resolve_config_path(path)
    if resolved_path == DEFAULT_CONFIG_PATH and not resolved_path.exists():
        # Environment variables alone may configure the tool.
        config_dict: Dict[str, Any] = {}
    else:
        config_dict = _load_from_file(resolved_path)
    return _apply_environment_overrides(config_dict)


def _section(config_dict: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = config_dict.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Configuration section '{key}' must be a mapping.")
    return value


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _to_int(value: Any, key: str) -> int:
    try:
        if isinstance(value, str):
            return int(value.strip())
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Configuration key '{key}' must be an integer, got {value!r}.") from exc


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return str(value)


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load application configuration from disk and environment variables."""

    config_dict = _load_config_dict(path)

    graph_section = _section(config_dict, "graph")
    default_graph = GraphConfig()
    graph_config = GraphConfig(
        tenant_id=_optional_str(graph_section.get("tenant_id")),
        client_id=_optional_str(graph_section.get("client_id")),
        client_secret=_optional_str(graph_section.get("client_secret")),
        base_url=(_optional_str(graph_section.get("base_url")) or default_graph.base_url).rstrip("/"),
        timeout=_to_int(graph_section.get("timeout", default_graph.timeout), "graph.timeout"),
    )

    exchange_section = _section(config_dict, "exchange")
    default_exchange = ExchangeConfig()
    exchange_config = ExchangeConfig(
        app_id=_optional_str(exchange_section.get("app_id")) or graph_config.client_id,
        organization=_optional_str(exchange_section.get("organization")),
        certificate_thumbprint=_optional_str(exchange_section.get("certificate_thumbprint")),
        powershell_path=(
            _optional_str(exchange_section.get("powershell_path")) or default_exchange.powershell_path
        ),
        timeout=_to_int(exchange_section.get("timeout", default_exchange.timeout), "exchange.timeout"),
    )

    offboarding_section = _section(config_dict, "offboarding")
    default_offboarding = OffboardingConfig()
    credential_length = _to_int(
        offboarding_section.get("credential_length", default_offboarding.credential_length),
        "offboarding.credential_length",
    )
    if credential_length < 8:
        raise ConfigurationError("offboarding.credential_length must be at least 8.")
    offboarding_config = OffboardingConfig(
        internal_message=str(
            offboarding_section.get("internal_message") or default_offboarding.internal_message
        ),
        external_message=str(
            offboarding_section.get("external_message") or default_offboarding.external_message
        ),
        credential_length=credential_length,
        hide_from_address_lists=_to_bool(
            offboarding_section.get("hide_from_address_lists", default_offboarding.hide_from_address_lists)
        ),
        deliver_to_mailbox_and_forward=_to_bool(
            offboarding_section.get(
                "deliver_to_mailbox_and_forward", default_offboarding.deliver_to_mailbox_and_forward
            )
        ),
        skip_unmanageable_groups=_to_bool(
            offboarding_section.get("skip_unmanageable_groups", default_offboarding.skip_unmanageable_groups)
        ),
        retain_licenses_on_conversion_failure=_to_bool(
            offboarding_section.get(
                "retain_licenses_on_conversion_failure",
                default_offboarding.retain_licenses_on_conversion_failure,
            )
        ),
    )

    logging_section = _section(config_dict, "logging")
    log_format = str(logging_section.get("format") or "text").strip().lower()
    if log_format not in {"text", "json"}:
        raise ConfigurationError("logging.format must be 'text' or 'json'.")
    logging_config = LoggingConfig(
        level=str(logging_section.get("level") or "INFO").strip().upper(),
        format=log_format,
    )

    return AppConfig(
        graph=graph_config,
        exchange=exchange_config,
        offboarding=offboarding_config,
        logging=logging_config,
    )


__all__ = [
    "AppConfig",
    "ConfigurationError",
    "ExchangeConfig",
    "GraphConfig",
    "LoggingConfig",
    "OffboardingConfig",
    "load_config",
]
