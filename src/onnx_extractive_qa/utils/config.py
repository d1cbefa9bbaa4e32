"""Configuration management utilities."""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from ..data.tokenization import TokenizerOptions


DEFAULT_CONFIG: Dict[str, Any] = {
    'model': {
        'name': 'distilbert-base-uncased-distilled-squad',
        'path': 'models/qa-model.onnx',
        'max_seq_length': 512,
    },
    'tokenizer': {
        'padding': True,
        'pad_to_max_length': False,
        'truncation': True,
        'truncation_strategy': 'longest_first',
        'skip_special_tokens': True,
    },
    'span': {
        'allow_single_token': False,
        'fallback_top_k': 5,
    },
    'engine': {
        'providers': ['CPUExecutionProvider'],
        'graph_optimization': 'all',
        'intra_op_num_threads': None,
        'load_timeout': 120.0,
        'inference_timeout': 30.0,
    },
    'export': {
        'opset_version': 14,
    },
    'infrastructure': {
        'log_level': 'INFO',
    },
}

TRUNCATION_STRATEGIES = ('longest_first', 'only_first', 'only_second')
GRAPH_OPTIMIZATION_LEVELS = ('disable', 'basic', 'extended', 'all')


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Configuration manager for loading and accessing configuration values.

    Values from a YAML file are merged over the built-in defaults, so a file
    only needs the keys it changes. Nested values are read with dot notation.
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None) -> None:
        """Initialize configuration manager.

        Args:
            config_path: Path to the configuration YAML file. If None, loads
                ``configs/default.yaml`` from the project root when present and
                falls back to the built-in defaults otherwise.

        Raises:
            FileNotFoundError: If an explicit configuration file does not exist.
            ValueError: If a configuration value is invalid.
        """
        self.logger = logging.getLogger(__name__)

        if config_path is None:
            project_root = Path(__file__).parent.parent.parent.parent
            default_path = project_root / "configs" / "default.yaml"
            self.config_path = default_path if default_path.exists() else None
        else:
            self.config_path = Path(config_path)

        self._config = self._load_config()
        self._validate_config()
        self._setup_logging()

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> 'Config':
        """Build a configuration from a dictionary of overrides."""
        config = cls.__new__(cls)
        config.logger = logging.getLogger(__name__)
        config.config_path = None
        config._config = _deep_merge(DEFAULT_CONFIG, values)
        config._validate_config()
        return config

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file.

        Returns:
            Dictionary containing configuration values.

        Raises:
            FileNotFoundError: If configuration file does not exist.
            yaml.YAMLError: If configuration file is not valid YAML.
        """
        if self.config_path is None:
            return copy.deepcopy(DEFAULT_CONFIG)

        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Error parsing configuration file: {e}")

        return _deep_merge(DEFAULT_CONFIG, loaded)

    def _validate_config(self) -> None:
        """Validate critical configuration values.

        Raises:
            ValueError: If any configuration value is invalid.
        """
        max_len = self.get('model.max_seq_length', 512)
        if not isinstance(max_len, int) or isinstance(max_len, bool) or max_len <= 0:
            raise ValueError(f"model.max_seq_length must be a positive integer, got {max_len}")

        strategy = self.get('tokenizer.truncation_strategy', 'longest_first')
        if strategy not in TRUNCATION_STRATEGIES:
            raise ValueError(
                f"tokenizer.truncation_strategy must be one of {TRUNCATION_STRATEGIES}, got {strategy}"
            )

        top_k = self.get('span.fallback_top_k', 5)
        if not isinstance(top_k, int) or isinstance(top_k, bool) or top_k <= 0:
            raise ValueError(f"span.fallback_top_k must be a positive integer, got {top_k}")

        level = self.get('engine.graph_optimization', 'all')
        if level not in GRAPH_OPTIMIZATION_LEVELS:
            raise ValueError(
                f"engine.graph_optimization must be one of {GRAPH_OPTIMIZATION_LEVELS}, got {level}"
            )

        for key in ('engine.load_timeout', 'engine.inference_timeout'):
            timeout = self.get(key)
            if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
                raise ValueError(f"{key} must be positive or null, got {timeout}")

        providers = self.get('engine.providers')
        if not isinstance(providers, list) or not providers:
            raise ValueError(f"engine.providers must be a non-empty list, got {providers}")

        self.logger.debug("Configuration validation passed")

    def _setup_logging(self) -> None:
        """Setup logging configuration."""
        log_level = self.get('infrastructure.log_level', 'INFO').upper()

        logging.basicConfig(
            level=getattr(logging, log_level),
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation.

        Args:
            key: Configuration key in dot notation (e.g., 'model.max_seq_length').
            default: Default value to return if key is not found.

        Returns:
            Configuration value or default.

        Example:
            >>> config = Config()
            >>> max_length = config.get('model.max_seq_length', 512)
        """
        keys = key.split('.')
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation.

        Args:
            key: Configuration key in dot notation.
            value: Value to set.
        """
        keys = key.split('.')
        config = self._config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def tokenizer_options(self, max_length: Optional[int] = None) -> TokenizerOptions:
        """Build the tokenizer option structure from the ``tokenizer`` section.

        Args:
            max_length: Overrides ``model.max_seq_length`` when given.
        """
        return TokenizerOptions(
            padding=bool(self.get('tokenizer.padding', True)),
            pad_to_max_length=bool(self.get('tokenizer.pad_to_max_length', False)),
            truncation=bool(self.get('tokenizer.truncation', True)),
            truncation_strategy=self.get('tokenizer.truncation_strategy', 'longest_first'),
            max_length=max_length if max_length is not None else self.get('model.max_seq_length', 512),
            skip_special_tokens=bool(self.get('tokenizer.skip_special_tokens', True)),
        )

    def save(self, output_path: Optional[Union[str, Path]] = None) -> None:
        """Save current configuration to YAML file.

        Args:
            output_path: Path to save configuration. If None, overwrites
                the original configuration file.

        Raises:
            ValueError: If no output path is given and the configuration was
                not loaded from a file.
        """
        if output_path is None:
            output_path = self.config_path
        if output_path is None:
            raise ValueError("No output path given and configuration has no source file")

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w', encoding='utf-8') as f:
            yaml.dump(self._config, f, default_flow_style=False, indent=2)

        self.logger.info(f"Configuration saved to {output_path}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary.

        Returns:
            Dictionary representation of the configuration.
        """
        return copy.deepcopy(self._config)

    def __getitem__(self, key: str) -> Any:
        """Support dictionary-style access."""
        return self.get(key)

    def __setitem__(self, key: str, value: Any) -> None:
        """Support dictionary-style assignment."""
        self.set(key, value)

    def __contains__(self, key: str) -> bool:
        """Support 'in' operator."""
        return self.get(key) is not None
