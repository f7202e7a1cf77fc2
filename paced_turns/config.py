"""Configuration management for paced conversational turns.

Supports building configuration from dataclass defaults, plain dicts,
a boolean auto-turn shorthand, or a YAML file.
"""

import math
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from paced_turns.errors import ConfigValidationError
from paced_turns.logging_config import get_logger

logger = get_logger(__name__)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


@dataclass(frozen=True)
class TurnsConfig:
    """Configuration for splitting and pacing responses.

    Attributes:
        enabled: Whether responses are split into paced turns at all.
        max_turns: Maximum deliverable turns per response, counting a
            pending follow-up as one turn.
        base_typing_speed: Simulated typing speed in words per minute.
        speed_variation: Jitter applied to the typing speed, in [0, 1].
        min_delay_ms: Lower bound for the delay before a turn.
        max_delay_ms: Upper bound for the delay before a turn.
        max_turn_concat_probability: Chance of concatenating turns when the
            turn total lands exactly on max_turns.
        follow_up_delay_ms: Delay before an automatic continuation request.
        max_sequential_follow_ups: Continuations allowed between two user
            messages.
    """
    enabled: bool = False
    max_turns: int = 3
    base_typing_speed: float = 38.0
    speed_variation: float = 0.2
    min_delay_ms: float = 1000
    max_delay_ms: float = 4000
    max_turn_concat_probability: float = 0.0
    follow_up_delay_ms: float = 2000
    max_sequential_follow_ups: int = 2

    def __post_init__(self):
        errors = self.validate()
        if errors:
            raise ConfigValidationError(
                "Invalid turns config:\n  - " + "\n  - ".join(errors)
            )

    def validate(self) -> list[str]:
        """Check every field and return the list of problems found."""
        errors = []

        if not isinstance(self.enabled, bool):
            errors.append(f"enabled must be a boolean, got {self.enabled!r}")

        numeric = [
            "max_turns",
            "base_typing_speed",
            "speed_variation",
            "min_delay_ms",
            "max_delay_ms",
            "max_turn_concat_probability",
            "follow_up_delay_ms",
            "max_sequential_follow_ups",
        ]
        bad = [name for name in numeric if not _is_number(getattr(self, name))]
        for name in bad:
            errors.append(f"{name} must be a finite number, got {getattr(self, name)!r}")
        if bad:
            return errors

        for name in ("max_turns", "max_sequential_follow_ups"):
            if not float(getattr(self, name)).is_integer():
                errors.append(f"{name} must be a whole number")

        if self.max_turns < 1:
            errors.append("max_turns must be at least 1")
        if self.base_typing_speed <= 0:
            errors.append("base_typing_speed must be positive")
        if not 0 <= self.speed_variation <= 1:
            errors.append("speed_variation must be between 0 and 1")
        if self.min_delay_ms < 0:
            errors.append("min_delay_ms must be non-negative")
        if self.max_delay_ms < 0:
            errors.append("max_delay_ms must be non-negative")
        if self.min_delay_ms > self.max_delay_ms:
            errors.append("min_delay_ms cannot be greater than max_delay_ms")
        if not 0 <= self.max_turn_concat_probability <= 1:
            errors.append("max_turn_concat_probability must be between 0 and 1")
        if self.follow_up_delay_ms < 0:
            errors.append("follow_up_delay_ms must be non-negative")
        if self.max_sequential_follow_ups < 0:
            errors.append("max_sequential_follow_ups must be non-negative")

        return errors

    @classmethod
    def from_dict(cls, data: dict) -> "TurnsConfig":
        """Build a config from a dict, rejecting unknown keys."""
        errors = validate_config_section("turns", data, cls)
        if errors:
            raise ConfigValidationError("\n".join(errors))
        return cls(**{k: v for k, v in data.items() if v is not None})

    @classmethod
    def from_auto_turn(cls, auto_turn: bool | None = None) -> "TurnsConfig":
        """Full default config switched on or off by a single flag."""
        return cls(enabled=bool(auto_turn))

    def with_updates(self, **changes: Any) -> "TurnsConfig":
        """Return a validated copy with the given fields replaced."""
        return replace(self, **changes)


@dataclass
class ClientConfig:
    """Configuration for the OpenAI-compatible chat endpoint.

    Attributes:
        endpoint: URL to the chat completions API endpoint.
        model: Model identifier to use.
        api_key: Optional API key for authentication.
        system_prompt: Optional system prompt prepended to requests.
        timeout: Request timeout in seconds.
        max_tokens: Token limit for regular requests (optional).
        max_follow_up_tokens: Token cap for continuation requests.
        history_size: Messages kept in the in-memory history.
    """
    endpoint: str = "http://localhost:11434/v1/chat/completions"
    model: str = "llama3.2:3b"
    api_key: str | None = None
    system_prompt: str | None = None
    timeout: float = 30.0
    max_tokens: int | None = None
    max_follow_up_tokens: int = 150
    history_size: int = 30


@dataclass
class PacedTurnsConfig:
    """Top-level configuration."""
    turns: TurnsConfig = field(default_factory=TurnsConfig)
    client: ClientConfig = field(default_factory=ClientConfig)


def coerce_config(value: "TurnsConfig | dict | bool | None") -> TurnsConfig:
    """Accept any supported config shorthand and return a TurnsConfig.

    Args:
        value: None (defaults), a bool (auto-turn shorthand), a dict of
            fields, or an existing TurnsConfig.

    Raises:
        ConfigValidationError: If the value is invalid.
    """
    if value is None:
        return TurnsConfig()
    if isinstance(value, TurnsConfig):
        return value
    if isinstance(value, bool):
        return TurnsConfig.from_auto_turn(value)
    if isinstance(value, dict):
        return TurnsConfig.from_dict(value)
    raise ConfigValidationError(f"Unsupported turns config type: {type(value).__name__}")


def validate_config_section(section_name: str, data: dict, config_class) -> list[str]:
    """Validate a config section against its dataclass.

    Args:
        section_name: Name of the section (for error messages).
        data: The config data dict.
        config_class: The dataclass to validate against.

    Returns:
        List of error messages (empty if valid).
    """
    if not isinstance(data, dict):
        return [f"Section '{section_name}' must be a mapping, got {type(data).__name__}"]
    valid_fields = {f.name for f in fields(config_class)}
    errors = []
    for key in data.keys():
        if key not in valid_fields:
            errors.append(f"Unknown field '{key}' in {section_name}. Valid fields: {sorted(valid_fields)}")
    return errors


def validate_config_data(config_data: dict, path: str | Path) -> None:
    """Validate config data and raise ConfigValidationError if invalid."""
    errors = []

    valid_sections = {"turns", "client"}
    for key in config_data.keys():
        if key not in valid_sections:
            errors.append(f"Unknown top-level section '{key}'. Valid sections: {sorted(valid_sections)}")

    section_mapping = {
        "turns": TurnsConfig,
        "client": ClientConfig,
    }
    for section_name, config_class in section_mapping.items():
        section_data = config_data.get(section_name)
        if section_data:
            errors.extend(validate_config_section(section_name, section_data, config_class))

    if errors:
        error_msg = f"Config validation failed for {path}:\n  - " + "\n  - ".join(errors)
        raise ConfigValidationError(error_msg)


def load_config(path: str | Path | None = None) -> PacedTurnsConfig:
    """Load configuration from a YAML file.

    If no path is provided, looks for config.yaml in the current directory.
    A missing file yields the default configuration.

    Raises:
        ConfigValidationError: If a section has unknown fields or a value
            is out of range.
        yaml.YAMLError: If the config file is invalid YAML.
    """
    path = Path("config.yaml") if path is None else Path(path)

    if not path.exists():
        logger.debug(f"No config at {path}, using defaults")
        return PacedTurnsConfig()

    with open(path) as f:
        config_data = yaml.safe_load(f) or {}

    if not isinstance(config_data, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping")

    validate_config_data(config_data, path)

    turns_data = config_data.get("turns") or {}
    client_data = config_data.get("client") or {}

    config = PacedTurnsConfig(
        turns=TurnsConfig(**{k: v for k, v in turns_data.items() if v is not None}),
        client=ClientConfig(**{k: v for k, v in client_data.items() if v is not None}),
    )
    logger.info(
        f"Loaded config from {path}",
        extra={"extra_data": {"enabled": config.turns.enabled, "max_turns": config.turns.max_turns}},
    )
    return config


def create_example_config(path: str | Path = "config.yaml") -> None:
    """Create an example configuration file.

    Args:
        path: Path where to write the example config.
    """
    example = """\
# Paced conversational turns configuration

turns:
  enabled: true
  max_turns: 3                     # Includes the pending follow-up, if any
  base_typing_speed: 38            # Words per minute
  speed_variation: 0.2             # +/-20% jitter
  min_delay_ms: 1000
  max_delay_ms: 4000
  max_turn_concat_probability: 0.0 # Chance to merge turns at exactly max_turns
  follow_up_delay_ms: 2000
  max_sequential_follow_ups: 2

client:
  endpoint: "http://localhost:11434/v1/chat/completions"
  model: "llama3.2:3b"
  # api_key: "sk-..."
  timeout: 30.0
  max_follow_up_tokens: 150
  history_size: 30
"""

    with open(path, "w") as f:
        f.write(example)

    logger.info(f"Created example config at {path}")
