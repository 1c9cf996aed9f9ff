"""
Runtime configuration.

Configuration is a nested dictionary, optionally read from a YAML file, with
per-environment overrides merged on top. Missing keys fall back to built-in
defaults, so the pipeline runs without any file at all.
"""

import logging
import os
import threading
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "SUBNN_CONFIG"
ENVIRONMENT_ENV_VAR = "SUBNN_ENV"

POOLING_POLICIES = ("none", "mean")


class Config:
    """Runtime configuration for the pipeline, engine and embedding service.

    Attributes:
        max_layers_per_call: Upper bound on layers executed per inference
            call (0 means no limit besides the cost budgets).
        window_budget: Estimated operations a window may grow to before the
            engine stops at a layer boundary (0 disables the limit).
        call_budget: Estimated operations after which the host would abort
            the call; windows above it fail with ResourceExhausted (0 disables).
        num_threads: Intra-op thread count used by the kernels.
        deterministic: Whether torch deterministic algorithms are enforced.
        require_offsets: Whether every uploaded chunk must carry its offset.
        embedding_layer: Layer index used by word_embeddings (None picks the
            first embedding layer).
        pooling: Multi-token policy for word_embeddings ("none" or "mean").
        log_level: Level applied by configure_logging.
    """

    def __init__(self, config_dict: Optional[Dict[str, Any]] = None):
        config_dict = config_dict or {}

        engine = config_dict.get("engine", {})
        self.max_layers_per_call = engine.get("max_layers_per_call", 8)
        self.window_budget = engine.get("window_budget", 50_000_000)
        self.call_budget = engine.get("call_budget", 0)
        self.num_threads = engine.get("num_threads", 1)
        self.deterministic = engine.get("deterministic", True)

        upload = config_dict.get("upload", {})
        self.require_offsets = upload.get("require_offsets", False)

        embedding = config_dict.get("embedding", {})
        self.embedding_layer = embedding.get("layer")
        self.pooling = embedding.get("pooling", "none")

        logging_section = config_dict.get("logging", {})
        self.log_level = logging_section.get("level", "INFO")

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If any configuration value is invalid.
        """
        if self.max_layers_per_call < 0:
            raise ValueError(
                f"max_layers_per_call must be >= 0, got {self.max_layers_per_call}"
            )
        if self.window_budget < 0:
            raise ValueError(f"window_budget must be >= 0, got {self.window_budget}")
        if self.call_budget < 0:
            raise ValueError(f"call_budget must be >= 0, got {self.call_budget}")
        if self.num_threads < 1:
            raise ValueError(f"num_threads must be >= 1, got {self.num_threads}")
        if self.embedding_layer is not None and self.embedding_layer < 0:
            raise ValueError(
                f"embedding layer must be >= 0, got {self.embedding_layer}"
            )
        if self.pooling not in POOLING_POLICIES:
            raise ValueError(
                f"pooling must be one of {POOLING_POLICIES}, got {self.pooling!r}"
            )
        if not isinstance(logging.getLevelName(str(self.log_level).upper()), int):
            raise ValueError(f"Unknown logging level {self.log_level!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration back to its nested dictionary form."""
        return {
            "engine": {
                "max_layers_per_call": self.max_layers_per_call,
                "window_budget": self.window_budget,
                "call_budget": self.call_budget,
                "num_threads": self.num_threads,
                "deterministic": self.deterministic,
            },
            "upload": {"require_offsets": self.require_offsets},
            "embedding": {"layer": self.embedding_layer, "pooling": self.pooling},
            "logging": {"level": self.log_level},
        }

    def __repr__(self) -> str:
        return f"Config({self.to_dict()!r})"


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries"""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_config(
    config_path: Optional[str] = None, environment: Optional[str] = None
) -> Config:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML file. Defaults to $SUBNN_CONFIG; when
            neither is set the built-in defaults are used.
        environment: Environment whose overrides are merged in (defaults to
            $SUBNN_ENV, then "development").

    Returns:
        Validated Config instance.

    Raises:
        FileNotFoundError: If an explicit config file does not exist.
        ValueError: If the file is not valid YAML or a value is invalid.
    """
    config_path = config_path or os.getenv(CONFIG_ENV_VAR)
    if config_path is None:
        config = Config()
        config.validate()
        return config

    try:
        with open(config_path, "r") as f:
            base_config = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    except yaml.YAMLError as exc:
        raise ValueError(f"Failed to parse YAML config file '{config_path}': {exc}") from exc

    env = environment or os.getenv(ENVIRONMENT_ENV_VAR) or "development"

    final_config = base_config
    if "environments" in base_config and env in base_config["environments"]:
        final_config = deep_merge(base_config, base_config["environments"][env])
    final_config.pop("environments", None)

    config = Config(final_config)
    config.validate()
    logger.debug("Loaded configuration from %s (environment=%s)", config_path, env)
    return config


def configure_logging(level: Optional[str] = None) -> None:
    """Apply a log level to the package logger hierarchy."""
    level = level or get_config().log_level
    logging.getLogger("subnn_lite").setLevel(str(level).upper())


_global_config: Optional[Config] = None
_config_lock = threading.Lock()


def initialize_config(
    config_path: Optional[str] = None, environment: Optional[str] = None
) -> Config:
    """Initialize global configuration (thread-safe)"""
    global _global_config
    with _config_lock:
        _global_config = load_config(config_path, environment)
        return _global_config


def get_config() -> Config:
    """Get global configuration, loading it on first use."""
    global _global_config

    if _global_config is not None:
        return _global_config

    with _config_lock:
        if _global_config is None:
            _global_config = load_config()
        return _global_config
