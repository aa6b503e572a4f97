"""
Configuration loader for the calendar sync queue
Defaults, overlaid by config/calsync.yaml, overlaid by environment variables
"""

import os
import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Dict, Any, Optional, Union

import yaml
from dotenv import load_dotenv

from calsync.core.models import ResolutionStrategy


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path('config/calsync.yaml')


class ConfigError(Exception):
    """Configuration-related error"""
    pass


def default_config() -> Dict[str, Any]:
    return {
        'database': {
            'url': 'sqlite+aiosqlite:///./data/calsync.db',
            'echo': False
        },
        'queue': {
            'batch_size': 10,
            'max_retries': None,
            'default_max_retries': 3,
            'default_priority': 0,
            'dispatch_timeout_seconds': 120,
            'stale_after_minutes': 15,
            'purge_after_days': 7,
            'fail_fast_permanent_errors': True,
            'process_interval_seconds': 0
        },
        'providers': {
            'timeout_seconds': 30,
            'enable_mock': True
        },
        'conflicts': {
            'default_strategy': 'merge',
            'auto_enqueue': True,
            'priority': 5
        },
        'api': {
            'host': '0.0.0.0',
            'port': 8080,
            'api_key': 'development-key-change-in-production',
            'cors_origins': ['*']
        },
        'security': {
            'credentials_key': None,
            'credentials_key_file': None
        },
        'logging': {
            'level': 'INFO',
            'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            'json': False,
            'file_enabled': False,
            'file_path': 'logs/calsync.log',
            'file_max_size': 10 * 1024 * 1024,
            'file_backup_count': 5
        }
    }


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Load configuration from environment and YAML files"""

    load_dotenv()

    config = default_config()

    yaml_path = Path(config_path) if config_path else Path(os.getenv('CALSYNC_CONFIG', DEFAULT_CONFIG_PATH))

    if yaml_path.exists():
        try:
            with open(yaml_path, 'r', encoding='utf-8') as f:
                yaml_config = yaml.safe_load(f)
            if yaml_config:
                _deep_update(config, yaml_config)
                logger.info(f"Configuration loaded from {yaml_path}")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load configuration from {yaml_path}: {e}")
            logger.error("Using default configuration")
    else:
        logger.warning(f"Configuration file {yaml_path} not found, using defaults")

    # Override with environment variables
    if os.getenv('CALSYNC_DATABASE_URL'):
        config['database']['url'] = os.getenv('CALSYNC_DATABASE_URL')

    if os.getenv('CALSYNC_API_KEY'):
        config['api']['api_key'] = os.getenv('CALSYNC_API_KEY')

    if os.getenv('CALSYNC_CREDENTIALS_KEY'):
        config['security']['credentials_key'] = os.getenv('CALSYNC_CREDENTIALS_KEY')

    if os.getenv('CALSYNC_BATCH_SIZE'):
        try:
            config['queue']['batch_size'] = int(os.getenv('CALSYNC_BATCH_SIZE'))
        except ValueError:
            logger.warning("Ignoring non-integer CALSYNC_BATCH_SIZE")

    if os.getenv('LOG_LEVEL'):
        config['logging']['level'] = os.getenv('LOG_LEVEL').upper()

    return config


def _deep_update(base_dict: Dict[str, Any], update_dict: Dict[str, Any]):
    """Deep update dictionary"""
    for key, value in update_dict.items():
        if key in base_dict and isinstance(base_dict[key], dict) and isinstance(value, dict):
            _deep_update(base_dict[key], value)
        else:
            base_dict[key] = value


@dataclass
class QueueSettings:
    """Tunables of the queue processor and sync executors"""
    batch_size: int = 10
    max_retries: Optional[int] = None
    default_max_retries: int = 3
    default_priority: int = 0
    dispatch_timeout_seconds: float = 120
    provider_timeout_seconds: float = 30
    stale_after_minutes: int = 15
    purge_after_days: int = 7
    fail_fast_permanent_errors: bool = True
    conflict_strategy: ResolutionStrategy = ResolutionStrategy.MERGE
    auto_enqueue_conflicts: bool = True
    conflict_priority: int = 5

    @property
    def stale_after(self) -> timedelta:
        return timedelta(minutes=self.stale_after_minutes)

    def validate(self):
        """Validate queue configuration"""
        if self.batch_size < 1:
            raise ConfigError("queue.batch_size must be at least 1")
        if self.max_retries is not None and self.max_retries < 1:
            raise ConfigError("queue.max_retries must be at least 1 when set")
        if self.default_max_retries < 1:
            raise ConfigError("queue.default_max_retries must be at least 1")
        if self.dispatch_timeout_seconds <= 0 or self.provider_timeout_seconds <= 0:
            raise ConfigError("Timeouts must be positive")
        if self.stale_after_minutes < 1:
            raise ConfigError("queue.stale_after_minutes must be at least 1")
        if self.purge_after_days < 0:
            raise ConfigError("queue.purge_after_days cannot be negative")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'QueueSettings':
        queue = config.get('queue', {})
        providers = config.get('providers', {})
        conflicts = config.get('conflicts', {})
        defaults = cls()

        try:
            strategy = ResolutionStrategy(conflicts.get('default_strategy', defaults.conflict_strategy.value))
        except ValueError:
            raise ConfigError(
                f"conflicts.default_strategy must be one of {[s.value for s in ResolutionStrategy]}"
            )

        settings = cls(
            batch_size=int(queue.get('batch_size', defaults.batch_size)),
            max_retries=queue.get('max_retries', defaults.max_retries),
            default_max_retries=int(queue.get('default_max_retries', defaults.default_max_retries)),
            default_priority=int(queue.get('default_priority', defaults.default_priority)),
            dispatch_timeout_seconds=float(queue.get('dispatch_timeout_seconds', defaults.dispatch_timeout_seconds)),
            provider_timeout_seconds=float(providers.get('timeout_seconds', defaults.provider_timeout_seconds)),
            stale_after_minutes=int(queue.get('stale_after_minutes', defaults.stale_after_minutes)),
            purge_after_days=int(queue.get('purge_after_days', defaults.purge_after_days)),
            fail_fast_permanent_errors=bool(queue.get('fail_fast_permanent_errors', defaults.fail_fast_permanent_errors)),
            conflict_strategy=strategy,
            auto_enqueue_conflicts=bool(conflicts.get('auto_enqueue', defaults.auto_enqueue_conflicts)),
            conflict_priority=int(conflicts.get('priority', defaults.conflict_priority))
        )
        settings.validate()
        return settings
