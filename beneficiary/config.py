"""Shared configuration for the beneficiary services.

This module centralizes environment variable access and default values.
An optional YAML or JSON override file (``APP_CONFIG_FILE``) is merged on
top of the environment so deployments can keep settings in one place.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

ENVIRONMENTS = ("development", "staging", "production", "local")

# Session store location
SESSION_DB_PATH = os.getenv("SESSION_DB_PATH", "./data/session.db")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


@dataclass
class BSPConfig:
    """Beneficiary service provider (backend) settings."""

    api_url: str = "http://localhost:3000/api/v1"
    api_key: str = ""
    timeout: float = 30.0


@dataclass
class HCXConfig:
    """HCX gateway settings."""

    gateway_url: str = "http://localhost:3001"
    participant_code: str = "BSP001"
    api_version: str = "v0.9"


@dataclass
class ValifyConfig:
    """Identity-verification vendor settings."""

    api_url: str = "https://api.valify.me"
    client_id: str = ""
    client_secret: str = ""
    timeout: float = 60.0
    face_match_threshold: float = 70.0


@dataclass
class RuntimeConfig:
    """Process-level settings."""

    environment: str = "development"
    enable_logging: bool = True
    enable_mock_data: bool = False
    log_level: str = "INFO"
    session_db_path: str = SESSION_DB_PATH
    encryption_key: str | None = None


@dataclass
class FeatureFlags:
    """Optional features that can be switched per deployment."""

    reimbursement_claims: bool = True
    biometric_auth: bool = True
    offline_mode: bool = False
    analytics: bool = False
    liveness_check: bool = False


@dataclass
class AppConfig:
    """Complete application configuration."""

    bsp: BSPConfig = field(default_factory=BSPConfig)
    hcx: HCXConfig = field(default_factory=HCXConfig)
    valify: ValifyConfig = field(default_factory=ValifyConfig)
    app: RuntimeConfig = field(default_factory=RuntimeConfig)
    features: FeatureFlags = field(default_factory=FeatureFlags)

    def validate(self) -> None:
        """Check required settings.

        Raises:
            ConfigurationError: Listing every missing or invalid setting
        """
        errors: list[str] = []

        if not self.bsp.api_url:
            errors.append("BSP_API_URL is required")
        if not self.hcx.gateway_url:
            errors.append("HCX_GATEWAY_URL is required")
        if not self.hcx.participant_code:
            errors.append("HCX_PARTICIPANT_CODE is required")
        if self.app.environment not in ENVIRONMENTS:
            errors.append(
                f"APP_ENV must be one of {', '.join(ENVIRONMENTS)}, "
                f"got {self.app.environment!r}"
            )
        if not 0 <= self.valify.face_match_threshold <= 100:
            errors.append("VALIFY_FACE_MATCH_THRESHOLD must be between 0 and 100")

        if errors:
            raise ConfigurationError(
                "Configuration validation failed:\n" + "\n".join(errors)
            )

        if not self.bsp.api_key and not self.app.enable_mock_data:
            logger.warning("BSP_API_KEY is not set. API calls may fail.")
        if not self.valify.client_id and not self.app.enable_mock_data:
            logger.warning("VALIFY_CLIENT_ID is not set. KYC verification may fail.")
        if not self.app.encryption_key and self.is_production():
            logger.warning(
                "SESSION_ENCRYPTION_KEY is not set. Session tokens are stored unencrypted."
            )

    def is_development(self) -> bool:
        return self.app.environment == "development"

    def is_staging(self) -> bool:
        return self.app.environment == "staging"

    def is_production(self) -> bool:
        return self.app.environment == "production"

    def is_local(self) -> bool:
        return self.app.environment == "local"

    def is_feature_enabled(self, feature: str) -> bool:
        if not hasattr(self.features, feature):
            raise ConfigurationError(f"Unknown feature flag: {feature}")
        return bool(getattr(self.features, feature))

    def describe(self) -> str:
        """Printable summary of the configuration with secrets masked."""
        lines = [
            "=" * 60,
            "ENVIRONMENT CONFIGURATION",
            "=" * 60,
            f"Environment: {self.app.environment.upper()}",
            f"BSP API: {self.bsp.api_url}",
            f"HCX Gateway: {self.hcx.gateway_url}",
            f"Participant Code: {self.hcx.participant_code}",
            f"Valify API: {self.valify.api_url}",
            f"BSP API Key: {_mask(self.bsp.api_key)}",
            f"Valify Client Secret: {_mask(self.valify.client_secret)}",
            f"Mock Data: {'ENABLED' if self.app.enable_mock_data else 'DISABLED'}",
            f"Logging: {'ENABLED' if self.app.enable_logging else 'DISABLED'}",
            "",
            "Feature Flags:",
        ]
        for name, value in asdict(self.features).items():
            lines.append(f"  - {name}: {'ENABLED' if value else 'DISABLED'}")
        lines.append("=" * 60)
        return "\n".join(lines)


def _mask(secret: str | None) -> str:
    if not secret:
        return "(not set)"
    if len(secret) <= 4:
        return "***"
    return f"{secret[:2]}***{secret[-2:]}"


def config_from_env() -> AppConfig:
    """Build configuration from environment variables."""
    return AppConfig(
        bsp=BSPConfig(
            api_url=os.getenv("BSP_API_URL", BSPConfig.api_url),
            api_key=os.getenv("BSP_API_KEY", ""),
            timeout=_env_int("API_TIMEOUT", 30000) / 1000,
        ),
        hcx=HCXConfig(
            gateway_url=os.getenv("HCX_GATEWAY_URL", HCXConfig.gateway_url),
            participant_code=os.getenv(
                "HCX_PARTICIPANT_CODE", HCXConfig.participant_code
            ),
            api_version=os.getenv("HCX_API_VERSION", HCXConfig.api_version),
        ),
        valify=ValifyConfig(
            api_url=os.getenv("VALIFY_API_URL", ValifyConfig.api_url),
            client_id=os.getenv("VALIFY_CLIENT_ID", ""),
            client_secret=os.getenv("VALIFY_CLIENT_SECRET", ""),
            timeout=_env_int("VALIFY_TIMEOUT", 60000) / 1000,
            face_match_threshold=float(
                os.getenv("VALIFY_FACE_MATCH_THRESHOLD", "70")
            ),
        ),
        app=RuntimeConfig(
            environment=os.getenv("APP_ENV", "development"),
            enable_logging=_env_bool("ENABLE_LOGGING", True),
            enable_mock_data=_env_bool("ENABLE_MOCK_DATA", False),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            session_db_path=os.getenv("SESSION_DB_PATH", SESSION_DB_PATH),
            encryption_key=os.getenv("SESSION_ENCRYPTION_KEY") or None,
        ),
        features=FeatureFlags(
            reimbursement_claims=_env_bool("FEATURE_REIMBURSEMENT_CLAIMS", True),
            biometric_auth=_env_bool("FEATURE_BIOMETRIC_AUTH", True),
            offline_mode=_env_bool("FEATURE_OFFLINE_MODE", False),
            analytics=_env_bool("FEATURE_ANALYTICS", False),
            liveness_check=_env_bool("FEATURE_LIVENESS_CHECK", False),
        ),
    )


def _read_override_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    suffix = path.suffix.lower()
    with open(path, encoding="utf-8") as f:
        if suffix in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        elif suffix == ".json":
            data = json.load(f)
        else:
            raise ConfigurationError(f"Unsupported config format: {suffix}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path.name} must contain a mapping")
    return data


def merge_overrides(config: AppConfig, overrides: dict[str, Any]) -> AppConfig:
    """Return a copy of ``config`` with section values replaced.

    Args:
        config: Base configuration
        overrides: Mapping of section name to a mapping of field values

    Raises:
        ConfigurationError: For unknown sections or fields
    """
    updated: dict[str, Any] = {}
    for section_name, values in overrides.items():
        if not hasattr(config, section_name):
            raise ConfigurationError(f"Unknown config section: {section_name}")
        section = getattr(config, section_name)
        if not isinstance(values, dict):
            raise ConfigurationError(f"Config section {section_name} must be a mapping")

        known = {f.name for f in fields(section)}
        unknown = set(values) - known
        if unknown:
            raise ConfigurationError(
                f"Unknown keys in {section_name}: {', '.join(sorted(unknown))}"
            )
        updated[section_name] = replace(section, **values)

    return replace(config, **updated)


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load configuration from the environment and an optional override file.

    Args:
        path: Override file; defaults to the ``APP_CONFIG_FILE`` env var

    Returns:
        Validated AppConfig
    """
    config = config_from_env()

    override_path = path or os.getenv("APP_CONFIG_FILE")
    if override_path:
        overrides = _read_override_file(Path(override_path))
        config = merge_overrides(config, overrides)
        logger.info(f"Loaded configuration overrides from {Path(override_path).name}")

    config.validate()
    return config
