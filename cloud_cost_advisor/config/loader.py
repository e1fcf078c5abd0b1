"""
Configuration management and loading.

Loads advisor thresholds, execution limits, approvers and notification
settings from YAML with strict validation.
"""

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union, get_args, get_origin

import yaml

from cloud_cost_advisor.core.commitments import CommitmentSettings
from cloud_cost_advisor.core.recommendations import DEFAULT_MIN_CONFIDENCE, RuleSettings


@dataclass(frozen=True)
class ThresholdConfig:
    """Data and confidence thresholds shared by the analysis stages."""
    min_confidence: float = DEFAULT_MIN_CONFIDENCE
    min_samples: int = 30

    def __post_init__(self):
        """Validate threshold values."""
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ValueError("min_confidence must be between 0 and 1")
        if self.min_samples <= 0:
            raise ValueError("min_samples must be > 0")


@dataclass(frozen=True)
class ExecutionConfig:
    """Limits for provider calls made by the orchestrator.

    ``lock_wait_seconds`` of 0 rejects an action on a busy resource; None
    waits for the running action to finish. ``rollback_grace_seconds`` is how
    long a timed-out dispatch may keep running before its rollback is given
    up; None waits for it.
    """
    call_timeout_seconds: Optional[float] = 30.0
    lock_wait_seconds: Optional[float] = 0.0
    max_workers: int = 4
    rollback_grace_seconds: Optional[float] = 30.0

    def __post_init__(self):
        """Validate execution limits."""
        if self.call_timeout_seconds is not None and self.call_timeout_seconds <= 0:
            raise ValueError("call_timeout_seconds must be > 0")
        if self.lock_wait_seconds is not None and self.lock_wait_seconds < 0:
            raise ValueError("lock_wait_seconds must be >= 0")
        if self.max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        if self.rollback_grace_seconds is not None and self.rollback_grace_seconds < 0:
            raise ValueError("rollback_grace_seconds must be >= 0")


@dataclass(frozen=True)
class EmailConfig:
    smtp_host: str
    sender: str
    recipients: Tuple[str, ...]
    smtp_port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None

    def __post_init__(self):
        """Validate e-mail settings."""
        if not self.recipients:
            raise ValueError("email recipients must not be empty")
        if not 0 < self.smtp_port < 65536:
            raise ValueError("smtp_port must be a valid port")


@dataclass(frozen=True)
class ChatConfig:
    webhook_url: str
    channel: Optional[str] = None
    timeout_seconds: float = 10.0

    def __post_init__(self):
        """Validate chat settings."""
        if not self.webhook_url.startswith(("http://", "https://")):
            raise ValueError("webhook_url must be an http(s) URL")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")


@dataclass(frozen=True)
class NotificationConfig:
    email: Optional[EmailConfig] = None
    chat: Optional[ChatConfig] = None


@dataclass(frozen=True)
class AdvisorConfig:
    """Complete advisor configuration.

    ``approvers`` of None lets anyone approve; an explicit list restricts
    approval and rejection to those names.
    """
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    rules: RuleSettings = field(default_factory=RuleSettings)
    commitment: CommitmentSettings = field(default_factory=CommitmentSettings)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    approvers: Optional[Tuple[str, ...]] = None


SECTIONS = {
    "thresholds": ThresholdConfig,
    "rules": RuleSettings,
    "commitment": CommitmentSettings,
    "execution": ExecutionConfig,
}


def default_config() -> AdvisorConfig:
    """Configuration with every default value."""
    return AdvisorConfig()


def load_advisor_config(path: str) -> AdvisorConfig:
    """Load and validate advisor configuration from YAML file.

    Every section is optional; omitted sections and keys keep their
    defaults. Unknown keys are errors so a typo never silently falls back
    to a default threshold.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AdvisorConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Advisor config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_top_keys = set(SECTIONS) | {"notifications", "approvers"}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections: Dict[str, Any] = {}
    for name, cls in SECTIONS.items():
        if name in raw_config:
            sections[name] = _parse_section(cls, raw_config[name], name)

    if "notifications" in raw_config:
        sections["notifications"] = _parse_notifications(raw_config["notifications"])

    if "approvers" in raw_config:
        approvers = raw_config["approvers"]
        if approvers is not None:
            sections["approvers"] = _coerce(approvers, Tuple[str, ...], "approvers")

    return AdvisorConfig(**sections)


def _parse_notifications(data: Any) -> NotificationConfig:
    if data is None:
        return NotificationConfig()
    if not isinstance(data, dict):
        raise ValueError("'notifications' must be a dictionary")

    unknown_keys = set(data.keys()) - {"email", "chat"}
    if unknown_keys:
        raise ValueError(f"Unknown keys in notifications: {unknown_keys}")

    return NotificationConfig(
        email=_parse_section(EmailConfig, data["email"], "notifications.email")
        if data.get("email") is not None else None,
        chat=_parse_section(ChatConfig, data["chat"], "notifications.chat")
        if data.get("chat") is not None else None,
    )


def _parse_section(cls, data: Any, path: str):
    """Build a config dataclass from a mapping, checking keys and types.

    Args:
        cls: Frozen dataclass describing the section
        data: Raw YAML value
        path: Path for error messages

    Returns:
        Instance of cls

    Raises:
        ValueError: If the section is malformed
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")

    fields = {f.name: f for f in dataclasses.fields(cls)}
    unknown_keys = set(data.keys()) - set(fields)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    kwargs = {}
    for name, f in fields.items():
        if name not in data:
            if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
                raise ValueError(f"Missing required '{name}' in {path}")
            continue
        kwargs[name] = _coerce(data[name], f.type, f"{path}.{name}")

    try:
        return cls(**kwargs)
    except ValueError as e:
        raise ValueError(f"Invalid {path}: {e}")


def _coerce(value: Any, annotation: Any, path: str) -> Any:
    """Check a YAML value against a field annotation and convert it."""
    if get_origin(annotation) is Union:
        args = [a for a in get_args(annotation) if a is not type(None)]
        if value is None:
            return None
        return _coerce(value, args[0], path)

    if get_origin(annotation) is tuple:
        if isinstance(value, str) or not isinstance(value, (list, tuple)):
            raise ValueError(f"'{path}' must be a list")
        item_type = get_args(annotation)[0]
        return tuple(_coerce(item, item_type, f"{path}[{i}]") for i, item in enumerate(value))

    # bool is an int subclass; reject it for numeric fields
    if annotation is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'{path}' must be a number")
        return float(value)
    if annotation is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"'{path}' must be an integer")
        return value
    if annotation is str:
        if not isinstance(value, str) or not value:
            raise ValueError(f"'{path}' must be a non-empty string")
        return value
    if annotation is bool:
        if not isinstance(value, bool):
            raise ValueError(f"'{path}' must be true or false")
        return value

    raise ValueError(f"Unsupported configuration type for {path}")
