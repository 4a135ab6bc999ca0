"""
Cloud Import - Configuration Management

Supports loading configuration from:
1. YAML config file (--config)
2. Environment variables (CLOUD_IMPORT_*, ARM_*, KUBECONFIG)
3. Command-line arguments (highest priority)

Config file example:
```yaml
workers: 5
mode: export
output: ./import.json
skip_types:
  - aws-native:efs:FileSystem

register:
  project: brownfield
  stack: ${CLOUD_IMPORT_STACK:-dev}

azure:
  subscription: ${ARM_SUBSCRIPTION_ID}
  location: westus2
```
"""
import os
import re
import stat
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

import yaml

from cloudimport.constants import (
    DEFAULT_OUTPUT,
    DEFAULT_PROJECT,
    DEFAULT_STACK,
    MODE_EXPORT,
    RUN_MODES,
)

logger = logging.getLogger(__name__)


# Default config file locations (checked in order)
DEFAULT_CONFIG_PATHS = [
    './cloud-import.yaml',
    './cloud-import.yml',
    '~/.cloud-import/config.yaml',
    '~/.cloud-import/config.yml',
]

# Mapping from config keys to env vars
ENV_VAR_MAPPING = {
    'workers': 'CLOUD_IMPORT_WORKERS',
    'mode': 'CLOUD_IMPORT_MODE',
    'skip_types': 'CLOUD_IMPORT_SKIP_TYPES',
    'output': 'CLOUD_IMPORT_OUTPUT',
    'log_level': 'CLOUD_IMPORT_LOG_LEVEL',
    'schema': 'CLOUD_IMPORT_SCHEMA',
    'register.project': 'CLOUD_IMPORT_PROJECT',
    'register.stack': 'CLOUD_IMPORT_STACK',
    'aws.profile': 'CLOUD_IMPORT_AWS_PROFILE',
    'aws.region': 'CLOUD_IMPORT_AWS_REGION',
    'azure.subscription': 'ARM_SUBSCRIPTION_ID',
    'azure.location': 'ARM_LOCATION',
    'kubernetes.kubeconfig': 'KUBECONFIG',
    'kubernetes.context': 'CLOUD_IMPORT_KUBE_CONTEXT',
}

LIST_KEYS = ('skip_types',)


def _substitute_env_vars(value: Any) -> Any:
    """Substitute ${ENV_VAR} patterns in string values."""
    if isinstance(value, str):
        # Pattern: ${VAR_NAME} or ${VAR_NAME:-default}
        pattern = r'\$\{([^}:]+)(?::-([^}]*))?\}'

        def replace(match):
            var_name = match.group(1)
            default = match.group(2) or ''
            return os.environ.get(var_name, default)

        return re.sub(pattern, replace, value)
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _get_nested(data: Dict, key_path: str, default: Any = None) -> Any:
    """Get a nested value from a dict using dot notation."""
    value = data
    for key in key_path.split('.'):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value


def _set_nested(data: Dict, key_path: str, value: Any) -> None:
    """Set a nested value in a dict using dot notation."""
    keys = key_path.split('.')
    for key in keys[:-1]:
        data = data.setdefault(key, {})
    data[keys[-1]] = value


def _split_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [v.strip() for v in value.split(',') if v.strip()]
    return [str(v).strip() for v in value or [] if str(v).strip()]


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML file."""
    path = Path(config_path).expanduser()

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    # Warn if config file has loose permissions
    file_mode = path.stat().st_mode
    if file_mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.warning(f"Config file {config_path} has loose permissions. "
                       f"Consider: chmod 600 {config_path}")

    logger.info(f"Loading config from {path}")

    with open(path) as f:
        config = yaml.safe_load(f) or {}

    return _substitute_env_vars(config)


def find_default_config() -> Optional[str]:
    """Find a config file in default locations."""
    for path in DEFAULT_CONFIG_PATHS:
        expanded = Path(path).expanduser()
        if expanded.exists():
            return str(expanded)
    return None


def load_env_config() -> Dict[str, Any]:
    """Load configuration from environment variables."""
    config: Dict[str, Any] = {}

    for config_key, env_var in ENV_VAR_MAPPING.items():
        value = os.environ.get(env_var)
        if value is None or value == '':
            continue
        if config_key in LIST_KEYS:
            value = _split_list(value)
        _set_nested(config, config_key, value)

    if os.environ.get('CLOUD_IMPORT_DEBUG'):
        config['log_level'] = 'DEBUG'

    return config


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """Merge multiple config dicts. Later configs override earlier ones."""
    result: Dict[str, Any] = {}

    for config in configs:
        for key, value in config.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = merge_configs(result[key], value)
            elif value is not None:
                result[key] = value

    return result


def args_to_config(args) -> Dict[str, Any]:
    """Convert argparse args to config dict format."""
    config: Dict[str, Any] = {}

    arg_mapping = {
        'workers': 'workers',
        'mode': 'mode',
        'skip_types': 'skip_types',
        'output': 'output',
        'log_level': 'log_level',
        'schema': 'schema',
        'run_import': 'run_import',
        'project': 'register.project',
        'stack': 'register.stack',
        'profile': 'aws.profile',
        'region': 'aws.region',
        'subscription': 'azure.subscription',
        'location': 'azure.location',
        'kubeconfig': 'kubernetes.kubeconfig',
        'context': 'kubernetes.context',
    }

    for arg_name, config_key in arg_mapping.items():
        value = getattr(args, arg_name, None)
        if value is None:
            continue
        # store_true flags only override when set
        if value is False:
            continue
        if config_key in LIST_KEYS:
            value = _split_list(value)
        _set_nested(config, config_key, value)

    return config


def load_config(args) -> Dict[str, Any]:
    """
    Load configuration from all sources and merge them.

    Priority (highest to lowest):
    1. CLI arguments
    2. Config file (--config or default location)
    3. Environment variables

    Returns merged config dict.
    """
    configs = []

    # 1. Environment variables (lowest priority)
    env_config = load_env_config()
    if env_config:
        logger.debug("Loaded config from environment variables")
        configs.append(env_config)

    # 2. Config file
    config_path = getattr(args, 'config', None)
    if config_path:
        configs.append(load_config_file(config_path))
    else:
        default_config = find_default_config()
        if default_config:
            logger.info(f"Found default config file: {default_config}")
            configs.append(load_config_file(default_config))

    # 3. CLI arguments (highest priority)
    configs.append(args_to_config(args))

    return merge_configs(*configs)


@dataclass
class RunConfig:
    """Validated settings for one discovery run."""
    workers: int
    mode: str = MODE_EXPORT
    skip_types: List[str] = field(default_factory=list)
    output: str = DEFAULT_OUTPUT
    log_level: str = 'INFO'
    schema: Optional[str] = None
    run_import: bool = False
    project: str = DEFAULT_PROJECT
    stack: str = DEFAULT_STACK
    provider_options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: Dict[str, Any], default_workers: int,
                    provider: Optional[str] = None) -> "RunConfig":
        """
        Build and validate a RunConfig from a merged config dict.

        Raises:
            ValueError: If workers or mode is invalid
        """
        raw_workers = config.get('workers')
        if raw_workers is None or raw_workers == '':
            workers = default_workers
        else:
            try:
                workers = int(raw_workers)
            except (TypeError, ValueError):
                raise ValueError(f"workers must be a positive integer, got {raw_workers!r}")
            if isinstance(raw_workers, float) and raw_workers != workers:
                raise ValueError(f"workers must be a positive integer, got {raw_workers!r}")
        if workers < 1:
            raise ValueError(f"workers must be a positive integer, got {raw_workers!r}")

        mode = str(config.get('mode') or MODE_EXPORT).lower()
        if mode not in RUN_MODES:
            raise ValueError(f"mode must be one of {', '.join(RUN_MODES)}, got {mode!r}")

        run_import = config.get('run_import', False)
        if isinstance(run_import, str):
            run_import = run_import.lower() in ('true', '1', 'yes')

        return cls(
            workers=workers,
            mode=mode,
            skip_types=_split_list(config.get('skip_types')),
            output=config.get('output') or DEFAULT_OUTPUT,
            log_level=str(config.get('log_level') or 'INFO'),
            schema=config.get('schema'),
            run_import=bool(run_import),
            project=_get_nested(config, 'register.project') or DEFAULT_PROJECT,
            stack=_get_nested(config, 'register.stack') or DEFAULT_STACK,
            provider_options=dict(config.get(provider) or {}) if provider else {},
        )


def generate_sample_config() -> str:
    """Generate a sample config file content."""
    return '''# Cloud Import Configuration
#
# Environment variable substitution supported:
#   ${VAR_NAME}           - required env var
#   ${VAR_NAME:-default}  - env var with default value

# =============================================================================
# Common Settings (apply to all providers)
# =============================================================================

# Number of concurrent shard workers (default depends on provider:
# aws 3, azure 10, kubernetes 10)
# workers: 5

# Run mode: export, register, incremental
mode: export

# Import file to write (local path or s3://bucket/key)
output: ./import.json

# Logging level: DEBUG, INFO, WARNING, ERROR
log_level: INFO

# Type tokens to always skip
# skip_types:
#   - aws-native:efs:FileSystem

# Local package schema file instead of downloading it
# schema: ./schema.json

# Run `pulumi import -f <output>` after export
# run_import: false


# =============================================================================
# Register Mode (Pulumi stack to read resources into)
# =============================================================================
register:
  project: cloud-import
  stack: ${CLOUD_IMPORT_STACK:-dev}


# =============================================================================
# AWS Settings (aws_import.py)
# =============================================================================
aws:
  # AWS CLI profile (optional, uses default credentials if not set)
  # profile: my-profile

  # Region to list resources in
  # region: us-west-2


# =============================================================================
# Azure Settings (azure_import.py)
# =============================================================================
azure:
  subscription: ${ARM_SUBSCRIPTION_ID}
  location: ${ARM_LOCATION:-westus2}


# =============================================================================
# Kubernetes Settings (k8s_import.py)
# =============================================================================
kubernetes:
  # kubeconfig: ~/.kube/config
  # context: my-cluster
'''
