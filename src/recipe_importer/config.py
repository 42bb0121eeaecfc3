"""Configuration management for recipe_importer.

Configuration priority (highest to lowest):
1. Values passed directly (``ImportConfig(...)`` or ``update()``)
2. Environment variables (RECIPE_IMPORTER_*)
3. Project config file (.recipe-importer.toml)
4. User config file (~/.config/recipe-importer/config.toml)
5. Default values

The configuration is never stored globally. It is handed to a
``ServiceFactory`` which injects the relevant settings into each service.

Example:
    >>> config = ImportConfig.load()
    >>> config.update(use_multi_stage=False)
    >>> config.save("~/.config/recipe-importer/config.toml")
"""

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .exceptions import ConfigurationError

ENV_PREFIX = "RECIPE_IMPORTER_"
CONFIG_SECTION = "recipe-importer"

VALID_VALIDATOR_STRATEGIES = frozenset({"basic", "enhanced"})
VALID_FALLBACK_STRATEGIES = frozenset({"simple", "template", "none"})
VALID_POLICIES = frozenset({"verbatim", "conservative", "enrich"})


@dataclass
class ImportConfig:
    """Configuration for the recipe import pipeline.

    Attributes:
        Model Settings:
            model: Chat model used for parsing, reconciliation and URL-only recovery
            base_url: OpenAI-compatible API base URL (None uses the SDK default)
            api_key: API key (None lets the SDK read OPENAI_API_KEY)
            temperature: Sampling temperature
            request_timeout: Per-request timeout in seconds
            vision_model: Model used for image OCR
            transcription_model: Model used for speech-to-text

        Transport Retry Settings (429/5xx, exponential backoff with jitter):
            transport_max_attempts, transport_initial_delay, transport_max_delay

        Parsing Settings (linear backoff between whole attempts):
            use_multi_stage, parse_max_attempts, parse_retry_delay,
            parse_confidence_threshold, consistency_pass

        Validation Settings:
            validator_strategy, strict_mode, allow_partial_data,
            fallback_strategy, validation_confidence_threshold

        Recovery Settings:
            enable_recovery, max_inferred_ingredients, recovery_min_confidence,
            ai_quantity_inference

        Fidelity Settings:
            fidelity_check, import_policy, min_ingredient_support, min_step_support

        Extraction Settings:
            fetch_timeout, use_reader_services, allow_url_only_fallback,
            oembed_access_token, min_content_length

        Video Settings:
            frame_interval, max_frames, transcribe_audio, audio_language,
            min_caption_length

        Telemetry Settings:
            telemetry_capacity
    """

    # Model settings
    model: str = "gpt-4o-mini"
    base_url: str | None = None
    api_key: str | None = None
    temperature: float = 0.0
    request_timeout: float = 60.0
    vision_model: str = "gpt-4o-mini"
    transcription_model: str = "whisper-1"

    # Transport retry settings
    transport_max_attempts: int = 3
    transport_initial_delay: float = 0.5
    transport_max_delay: float = 8.0

    # Parsing settings
    use_multi_stage: bool = True
    parse_max_attempts: int = 3
    parse_retry_delay: float = 1.0
    parse_confidence_threshold: float = 0.7
    consistency_pass: bool = True

    # Validation settings
    validator_strategy: str = "enhanced"
    strict_mode: bool = False
    allow_partial_data: bool = True
    fallback_strategy: str = "simple"
    validation_confidence_threshold: float = 0.5

    # Recovery settings
    enable_recovery: bool = True
    max_inferred_ingredients: int = 5
    recovery_min_confidence: float = 0.5
    ai_quantity_inference: bool = False

    # Fidelity settings
    fidelity_check: bool = True
    import_policy: str = "conservative"
    min_ingredient_support: float = 0.7
    min_step_support: float = 0.7

    # Extraction settings
    fetch_timeout: float = 15.0
    use_reader_services: bool = True
    allow_url_only_fallback: bool = True
    oembed_access_token: str | None = None
    min_content_length: int = 100

    # Video settings
    frame_interval: float = 10.0
    max_frames: int = 8
    transcribe_audio: bool = True
    audio_language: str = "english"
    min_caption_length: int = 80

    # Telemetry settings
    telemetry_capacity: int = 20

    def __post_init__(self) -> None:
        """Validate configuration values after initialization."""
        self._validate()

    def _validate(self) -> None:
        """Validate configuration values.

        Raises:
            ConfigurationError: If any configuration value is invalid
        """
        if not self.model:
            raise ConfigurationError("model must not be empty", model=self.model)

        if not 0.0 <= self.temperature <= 2.0:
            raise ConfigurationError(
                "Temperature must be between 0.0 and 2.0",
                temperature=self.temperature,
            )

        for name in ("request_timeout", "fetch_timeout", "frame_interval"):
            value = getattr(self, name)
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive", **{name: value})

        for name in ("transport_max_attempts", "parse_max_attempts", "max_frames"):
            value = getattr(self, name)
            if value < 1:
                raise ConfigurationError(f"{name} must be at least 1", **{name: value})

        for name in ("transport_initial_delay", "transport_max_delay", "parse_retry_delay"):
            value = getattr(self, name)
            if value < 0:
                raise ConfigurationError(f"{name} must be non-negative", **{name: value})

        if self.transport_max_delay < self.transport_initial_delay:
            raise ConfigurationError(
                "transport_max_delay must be >= transport_initial_delay",
                transport_initial_delay=self.transport_initial_delay,
                transport_max_delay=self.transport_max_delay,
            )

        for name in (
            "parse_confidence_threshold",
            "validation_confidence_threshold",
            "recovery_min_confidence",
            "min_ingredient_support",
            "min_step_support",
        ):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(
                    f"{name} must be between 0.0 and 1.0", **{name: value}
                )

        if self.validator_strategy not in VALID_VALIDATOR_STRATEGIES:
            raise ConfigurationError(
                f"Invalid validator strategy: {self.validator_strategy}",
                validator_strategy=self.validator_strategy,
                valid_strategies=", ".join(sorted(VALID_VALIDATOR_STRATEGIES)),
            )

        if self.fallback_strategy not in VALID_FALLBACK_STRATEGIES:
            raise ConfigurationError(
                f"Invalid fallback strategy: {self.fallback_strategy}",
                fallback_strategy=self.fallback_strategy,
                valid_strategies=", ".join(sorted(VALID_FALLBACK_STRATEGIES)),
            )

        if self.import_policy not in VALID_POLICIES:
            raise ConfigurationError(
                f"Invalid import policy: {self.import_policy}",
                import_policy=self.import_policy,
                valid_policies=", ".join(sorted(VALID_POLICIES)),
            )

        if self.max_inferred_ingredients < 0:
            raise ConfigurationError(
                "max_inferred_ingredients must be non-negative",
                max_inferred_ingredients=self.max_inferred_ingredients,
            )

        if self.min_content_length < 0 or self.min_caption_length < 0:
            raise ConfigurationError(
                "Content length thresholds must be non-negative",
                min_content_length=self.min_content_length,
                min_caption_length=self.min_caption_length,
            )

        if self.telemetry_capacity < 1:
            raise ConfigurationError(
                "telemetry_capacity must be at least 1",
                telemetry_capacity=self.telemetry_capacity,
            )

    @classmethod
    def load(
        cls,
        config_path: str | Path | None = None,
        load_user_config: bool = True,
        load_env: bool = True,
    ) -> "ImportConfig":
        """Load configuration from file(s) and environment variables.

        Args:
            config_path: Path to project config file (optional)
            load_user_config: Whether to load the user config file
            load_env: Whether to load RECIPE_IMPORTER_* environment variables

        Returns:
            Loaded and validated configuration

        Raises:
            ConfigurationError: If configuration is invalid
        """
        config_dict: dict[str, Any] = {}

        if load_user_config:
            user_config_path = Path.home() / ".config" / "recipe-importer" / "config.toml"
            if user_config_path.exists():
                config_dict.update(cls._load_toml(user_config_path))

        if config_path:
            project_path = Path(config_path)
            if project_path.exists():
                config_dict.update(cls._load_toml(project_path))
        else:
            default_path = Path(".recipe-importer.toml")
            if default_path.exists():
                config_dict.update(cls._load_toml(default_path))

        if load_env:
            config_dict.update(cls._load_env())

        unknown = set(config_dict) - set(cls.__dataclass_fields__)
        if unknown:
            raise ConfigurationError(
                "Unknown configuration keys",
                keys=", ".join(sorted(unknown)),
            )

        return cls(**config_dict)

    @staticmethod
    def _load_toml(path: Path) -> dict[str, Any]:
        """Load configuration from a TOML file.

        Raises:
            ConfigurationError: If the TOML file is invalid
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if CONFIG_SECTION in data:
                return data[CONFIG_SECTION]
            return data

        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigurationError(
                f"Failed to load configuration from {path}",
                path=str(path),
                error=str(e),
            ) from e

    @staticmethod
    def _load_env() -> dict[str, Any]:
        """Load configuration from environment variables.

        Variables use the RECIPE_IMPORTER_ prefix and uppercase snake_case, e.g.
        RECIPE_IMPORTER_USE_MULTI_STAGE=false or RECIPE_IMPORTER_MAX_FRAMES=4.
        """
        config: dict[str, Any] = {}

        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue

            config_key = key[len(ENV_PREFIX) :].lower()

            if value.lower() in ("true", "yes", "on"):
                config[config_key] = True
            elif value.lower() in ("false", "no", "off"):
                config[config_key] = False
            elif value.isdigit():
                config[config_key] = int(value)
            elif value.replace(".", "", 1).isdigit():
                config[config_key] = float(value)
            else:
                config[config_key] = value

        return config

    def save(self, path: str | Path) -> None:
        """Save configuration to a TOML file.

        ``None`` values are omitted since TOML has no null. The API key is
        never written.

        Raises:
            ConfigurationError: If save fails
        """
        import tomli_w

        path = Path(path).expanduser()
        config_dict = {
            key: value
            for key, value in self.to_dict().items()
            if value is not None and key != "api_key"
        }

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as f:
                tomli_w.dump(config_dict, f)
        except (OSError, TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Failed to save configuration to {path}",
                path=str(path),
                error=str(e),
            ) from e

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to a dictionary."""
        return dict(self.__dict__)

    def update(self, **kwargs: Any) -> None:
        """Update configuration values and re-validate.

        Raises:
            ConfigurationError: If a key is unknown or a value is invalid
        """
        for key, value in kwargs.items():
            if key in self.__dataclass_fields__:
                setattr(self, key, value)
            else:
                raise ConfigurationError(
                    f"Unknown configuration key: {key}",
                    key=key,
                    valid_keys=", ".join(self.__dataclass_fields__.keys()),
                )

        self._validate()
