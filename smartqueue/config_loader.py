"""
Configuration Loader - Manages YAML configuration and environment variables
"""
import os
from typing import Any, Dict, Optional

import yaml

from .embeddings.cooccurrence import CoOccurrenceConfig
from .embeddings.embedding_engine import EmbeddingConfig
from .embeddings.taste_profile import TasteProfileConfig
from .embeddings.vector_index import IndexConfig
from .queue.smart_queue import SmartQueueConfig
from .scoring.weights import ModeAdjustments, RadioConfig, ScoringWeights

SECTIONS = (
    "embedding", "index", "taste_profile", "cooccurrence", "scoring",
    "queue", "radio", "storage", "api", "logging",
)


def _section_kwargs(section: Dict[str, Any], cls) -> Dict[str, Any]:
    """Keys of `section` that are fields of the dataclass `cls`."""
    names = set(cls.__dataclass_fields__)
    return {k: v for k, v in (section or {}).items() if k in names}


class Config:
    """Configuration manager for the SmartQueue engine"""

    def __init__(self, config_path: Optional[str] = None):
        """
        Load configuration

        Args:
            config_path: YAML file; None uses built-in defaults only

        Raises:
            FileNotFoundError: If config_path is given but missing
            ValueError: If the file is not a mapping or a section is malformed
        """
        self.config_path = config_path
        self.config = self._load_config()
        self._validate_config()

    def _load_config(self) -> dict:
        """Load configuration from YAML file"""
        if self.config_path is None:
            return {}
        if not os.path.exists(self.config_path):
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {self.config_path}")
        return data

    def _validate_config(self):
        """Every known section, when present, must be a mapping"""
        for section in SECTIONS:
            value = self.config.get(section)
            if value is not None and not isinstance(value, dict):
                raise ValueError(f"Configuration section '{section}' must be a mapping")

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """
        Get configuration value

        Args:
            section: Configuration section
            key: Configuration key
            default: Default value if not found

        Returns:
            Configuration value or default
        """
        if section not in self.config or self.config[section] is None:
            return default
        return self.config[section].get(key, default)

    def section(self, name: str) -> Dict[str, Any]:
        return dict(self.config.get(name) or {})

    # Storage
    @property
    def storage_backend(self) -> str:
        """memory, json or sqlite"""
        return self.get('storage', 'backend', 'memory')

    @property
    def storage_path(self) -> Optional[str]:
        """Storage file path (with environment variable override)"""
        return os.getenv('SMARTQUEUE_STORAGE_PATH') or self.get('storage', 'path')

    # Recommendation API
    @property
    def api_base_url(self) -> Optional[str]:
        """Recommendation service URL (with environment variable override)"""
        return os.getenv('SMARTQUEUE_API_URL') or self.get('api', 'base_url')

    @property
    def api_timeout(self) -> float:
        return float(self.get('api', 'timeout_s', 10))

    @property
    def api_host(self) -> str:
        """Bind address of the HTTP server"""
        return self.get('api', 'host', '127.0.0.1')

    @property
    def api_port(self) -> int:
        return int(self.get('api', 'port', 8000))

    # Logging
    @property
    def log_level(self) -> str:
        return os.getenv('LOG_LEVEL') or self.get('logging', 'level', 'INFO')

    @property
    def log_file(self) -> Optional[str]:
        return os.getenv('LOG_FILE') or self.get('logging', 'file')

    # Engine
    @property
    def timezone(self) -> str:
        """Timezone for time-of-day features"""
        return self.get('taste_profile', 'timezone', 'UTC')

    @property
    def rng_seed(self) -> int:
        """Seed for the scoring engine's random source"""
        return int(self.get('scoring', 'seed', 0))

    @property
    def source_timeout(self) -> float:
        """Per-source timeout for candidate gathering"""
        return float(self.get('queue', 'source_timeout_s', 10.0))

    @property
    def source_workers(self) -> int:
        return int(self.get('queue', 'source_workers', 6))

    # Component configs
    def embedding_config(self) -> EmbeddingConfig:
        return EmbeddingConfig(**_section_kwargs(self.section('embedding'), EmbeddingConfig))

    def index_config(self) -> IndexConfig:
        return IndexConfig(**_section_kwargs(self.section('index'), IndexConfig))

    def taste_profile_config(self) -> TasteProfileConfig:
        return TasteProfileConfig(**_section_kwargs(self.section('taste_profile'), TasteProfileConfig))

    def cooccurrence_config(self) -> CoOccurrenceConfig:
        return CoOccurrenceConfig(**_section_kwargs(self.section('cooccurrence'), CoOccurrenceConfig))

    def scoring_weights(self) -> ScoringWeights:
        weights = self.section('scoring').get('weights') or {}
        return ScoringWeights(**_section_kwargs(weights, ScoringWeights))

    def mode_adjustments(self) -> ModeAdjustments:
        return ModeAdjustments(**_section_kwargs(self.section('scoring'), ModeAdjustments))

    def queue_config(self) -> SmartQueueConfig:
        return SmartQueueConfig(**_section_kwargs(self.section('queue'), SmartQueueConfig))

    def radio_config(self) -> RadioConfig:
        return RadioConfig(**_section_kwargs(self.section('radio'), RadioConfig))
