"""Configuration management for the finding remediation stack.

This module provides a centralized configuration loader that:
1. Checks environment variables first
2. Falls back to YAML configuration files
3. Provides type-safe configuration objects
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

CONFIG_DIR = Path(__file__).parent.parent.parent / "config"


class AWSConfig(BaseModel):
    """AWS-related configuration."""
    region: str = "us-east-1"
    profile: Optional[str] = None


class AlertsConfig(BaseModel):
    """Finding notification configuration."""
    sns_topic_name: str
    email_endpoints: List[str] = Field(default_factory=list)


class RemediationConfig(BaseModel):
    """Remediation Lambda settings."""
    # Used only when a custom action event names no EC2 instance
    quarantine_instance_id: Optional[str] = None
    timeout_seconds: int = Field(35, ge=1, le=900)
    dry_run: bool = False


class ThreatListConfig(BaseModel):
    """GuardDuty threat list bucket. Default name is s3-gd-<account>-<region>."""
    bucket_name: Optional[str] = None


class LambdaConfig(BaseModel):
    """Where the Lambda code asset is read from at synth time."""
    asset_path: str = "dist/lambda"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"


class FeatureFlags(BaseModel):
    """Feature toggles for optional components."""
    enable_threat_list_bucket: bool = True
    enable_guardduty_detector: bool = False


class Config(BaseModel):
    """Main configuration object."""
    environment: str = "dev"
    app_name: str = "guardduty-remediation"
    aws: AWSConfig = Field(default_factory=AWSConfig)
    alerts: AlertsConfig
    remediation: RemediationConfig = Field(default_factory=RemediationConfig)
    threat_list: ThreatListConfig = Field(default_factory=ThreatListConfig)
    # "lambda" is a keyword, hence the alias
    lambda_: LambdaConfig = Field(default_factory=LambdaConfig, alias="lambda")
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    features: FeatureFlags = Field(default_factory=FeatureFlags)

    model_config = {"populate_by_name": True}


def load_config(environment: Optional[str] = None, config_dir: Optional[Path] = None) -> Config:
    """Load configuration from environment variables and YAML files.

    Args:
        environment: Environment name (dev/prod). If None, uses ENVIRONMENT env var.
        config_dir: Directory holding ``<environment>.yml``. Defaults to ./config.

    Returns:
        Loaded configuration object.

    Raises:
        FileNotFoundError: If configuration file doesn't exist.
        ValueError: If configuration is invalid.
    """
    env = environment or os.getenv("ENVIRONMENT", "dev")

    config_file = Path(config_dir or CONFIG_DIR) / f"{env}.yml"
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    with open(config_file, 'r') as f:
        config_data = yaml.safe_load(f) or {}

    config_data.setdefault("environment", env)
    config_data = _apply_env_overrides(config_data)

    return Config(**config_data)


def _env_bool(value: str) -> bool:
    return value.lower() in ("1", "true", "yes")


def _apply_env_overrides(config_data: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to configuration data."""
    # AWS overrides
    if os.getenv("AWS_REGION"):
        config_data.setdefault("aws", {})["region"] = os.getenv("AWS_REGION")
    if os.getenv("AWS_PROFILE"):
        config_data.setdefault("aws", {})["profile"] = os.getenv("AWS_PROFILE")

    # Alerts overrides
    if os.getenv("SNS_TOPIC_NAME"):
        config_data.setdefault("alerts", {})["sns_topic_name"] = os.getenv("SNS_TOPIC_NAME")
    alert_emails = os.getenv("ALERT_EMAILS")
    if alert_emails:
        # comma-separated list of emails
        emails = [e.strip() for e in alert_emails.split(",") if e.strip()]
        config_data.setdefault("alerts", {})["email_endpoints"] = emails

    # Remediation overrides
    if os.getenv("QUARANTINE_INSTANCE_ID"):
        config_data.setdefault("remediation", {})["quarantine_instance_id"] = os.getenv("QUARANTINE_INSTANCE_ID")
    dry_run = os.getenv("REMEDIATION_DRY_RUN")
    if dry_run:
        config_data.setdefault("remediation", {})["dry_run"] = _env_bool(dry_run)

    if os.getenv("LAMBDA_ASSET_PATH"):
        config_data.setdefault("lambda", {})["asset_path"] = os.getenv("LAMBDA_ASSET_PATH")

    if os.getenv("LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = os.getenv("LOG_LEVEL")

    # Feature flag overrides
    enable_bucket = os.getenv("ENABLE_THREAT_LIST_BUCKET")
    if enable_bucket:
        config_data.setdefault("features", {})["enable_threat_list_bucket"] = _env_bool(enable_bucket)
    enable_detector = os.getenv("ENABLE_GUARDDUTY_DETECTOR")
    if enable_detector:
        config_data.setdefault("features", {})["enable_guardduty_detector"] = _env_bool(enable_detector)

    return config_data


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging for Lambda entry points and the CLI.

    The Lambda runtime installs its own root handler, in which case
    ``basicConfig`` is a no-op and only the level is applied.
    """
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=level_name,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logging.getLogger().setLevel(level_name)


def is_aws_deploy_allowed() -> bool:
    """Check if AWS deployments are allowed (safety flag)."""
    return os.getenv("ALLOW_AWS_DEPLOY", "").lower() in ("1", "true", "yes")
