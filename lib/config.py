"""
Azure VM Export - Configuration Management

Supports loading configuration from:
1. YAML config file (--config)
2. Environment variables (VMX_*)
3. Command-line arguments (highest priority)

Config file example:
```yaml
output: "./reports/vm_inventory.csv"
output_mode: combined
log_level: INFO

azure:
  subscriptions:
    - "11111111-1111-1111-1111-111111111111"
    - ${VMX_EXTRA_SUBSCRIPTION}
  regions:
    - eastus
```
"""
import logging
import os
import re
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .constants import DEFAULT_OUTPUT_PATH, OUTPUT_MODE_COMBINED, OUTPUT_MODES

logger = logging.getLogger(__name__)


# Default config file locations (checked in order)
DEFAULT_CONFIG_PATHS = [
    './vm-export.yaml',
    './vm-export.yml',
    '~/.vm-export/config.yaml',
    '~/.vm-export/config.yml',
]

# Mapping from config keys to env vars
ENV_VAR_MAPPING = {
    'output': 'VMX_OUTPUT',
    'output_mode': 'VMX_OUTPUT_MODE',
    'log_level': 'VMX_LOG_LEVEL',
    'log_dir': 'VMX_LOG_DIR',
    'azure.subscriptions': 'VMX_SUBSCRIPTIONS',
    'azure.all_subscriptions': 'VMX_ALL_SUBSCRIPTIONS',
    'azure.regions': 'VMX_REGIONS',
}

_LIST_KEYS = ('azure.subscriptions', 'azure.regions')
_BOOL_KEYS = ('azure.all_subscriptions',)


class ConfigError(ValueError):
    """Raised when the merged configuration cannot drive an export."""


@dataclass
class ExportSettings:
    """Resolved settings for one export run."""
    output_path: str = DEFAULT_OUTPUT_PATH
    subscription_ids: List[str] = field(default_factory=list)
    all_subscriptions: bool = False
    output_mode: str = OUTPUT_MODE_COMBINED
    regions: List[str] = field(default_factory=list)
    log_level: str = 'INFO'
    log_dir: Optional[str] = None


def parse_id_list(value: Any) -> List[str]:
    """
    Parse a comma-separated string (or list) of identifiers.

    Entries are whitespace-trimmed, empty entries dropped and duplicates
    removed, keeping the first occurrence's position.
    """
    if not value:
        return []
    if isinstance(value, str):
        items = value.split(',')
    else:
        items = [str(v) for v in value if v is not None]

    result: List[str] = []
    for item in items:
        item = item.strip()
        if item and item not in result:
            result.append(item)
    return result


def _parse_bool(value: Any) -> bool:
    """Interpret env and YAML booleans ('true', '1', 'yes' are true)."""
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes')
    return bool(value)


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


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML file."""
    path = Path(config_path).expanduser()

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    file_mode = path.stat().st_mode
    if file_mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.warning(f"Config file {config_path} has loose permissions. "
                       f"Consider: chmod 600 {config_path}")

    logger.info(f"Loading config from {path}")

    with open(path, encoding='utf-8') as f:
        try:
            config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

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
        if value is None:
            continue
        if config_key in _LIST_KEYS:
            value = parse_id_list(value)
        elif config_key in _BOOL_KEYS:
            value = _parse_bool(value)
        _set_nested(config, config_key, value)

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
    config: Dict[str, Any] = {'azure': {}}

    arg_mapping = {
        'output': 'output',
        'output_mode': 'output_mode',
        'log_level': 'log_level',
        'log_dir': 'log_dir',
        'subscriptions': 'azure.subscriptions',
        'regions': 'azure.regions',
    }

    for arg_name, config_key in arg_mapping.items():
        value = getattr(args, arg_name, None)
        if value is not None:
            if config_key in _LIST_KEYS:
                value = parse_id_list(value)
            _set_nested(config, config_key, value)

    # store_true flags only override when set
    if getattr(args, 'all_subscriptions', False):
        _set_nested(config, 'azure.all_subscriptions', True)

    return config


def config_to_settings(config: Dict[str, Any]) -> ExportSettings:
    """Build ExportSettings from a merged config dict."""
    output_mode = config.get('output_mode') or OUTPUT_MODE_COMBINED
    if output_mode not in OUTPUT_MODES:
        raise ConfigError(
            f"Invalid output_mode '{output_mode}' (expected one of: {', '.join(OUTPUT_MODES)})"
        )

    return ExportSettings(
        output_path=config.get('output') or DEFAULT_OUTPUT_PATH,
        subscription_ids=parse_id_list(_get_nested(config, 'azure.subscriptions')),
        all_subscriptions=_parse_bool(_get_nested(config, 'azure.all_subscriptions', False)),
        output_mode=output_mode,
        regions=[r.lower() for r in parse_id_list(_get_nested(config, 'azure.regions'))],
        log_level=str(config.get('log_level') or 'INFO'),
        log_dir=config.get('log_dir'),
    )


def prompt_for_missing(settings: ExportSettings, input_fn=None) -> ExportSettings:
    """
    Ask for the output path and subscription IDs interactively.

    Only prompts for values that were not supplied by any other source.
    """
    input_fn = input_fn or input
    if not settings.subscription_ids and not settings.all_subscriptions:
        output = input_fn(f"Output CSV path [{settings.output_path}]: ").strip()
        if output:
            settings.output_path = output
        settings.subscription_ids = parse_id_list(
            input_fn("Subscription IDs (comma-separated): ")
        )
    return settings


def load_config(args) -> ExportSettings:
    """
    Load configuration from all sources and merge them.

    Priority (highest to lowest):
    1. CLI arguments
    2. Config file (--config or default location)
    3. Environment variables

    Returns resolved ExportSettings.
    """
    configs = []

    env_config = load_env_config()
    if env_config:
        logger.debug("Loaded config from environment variables")
        configs.append(env_config)

    config_path = getattr(args, 'config', None)
    if config_path:
        configs.append(load_config_file(config_path))
    else:
        default_config = find_default_config()
        if default_config:
            logger.info(f"Found default config file: {default_config}")
            configs.append(load_config_file(default_config))

    configs.append(args_to_config(args))

    return config_to_settings(merge_configs(*configs))


def generate_sample_config() -> str:
    """Generate a sample config file content."""
    return '''# Azure VM Export Configuration
#
# Environment variable substitution supported:
#   ${VAR_NAME}           - required env var
#   ${VAR_NAME:-default}  - env var with default value

# Output CSV path (local path or https://<account>.blob.core.windows.net/<container>/<blob>)
output: "./vm_inventory.csv"

# combined: one file with every subscription's VMs
# per-subscription: one file per subscription (<name>_<subscription-id>.csv)
output_mode: combined

# Logging level: DEBUG, INFO, WARNING, ERROR
log_level: INFO

# Directory for a redacted log file (optional)
# log_dir: "./logs"

azure:
  # Subscriptions to export, processed in this order
  subscriptions:
    - "xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx"

  # Export every enabled subscription the credential can see instead
  # all_subscriptions: true

  # Only export VMs in these regions (default: all)
  # regions:
  #   - eastus
  #   - westeurope
'''
