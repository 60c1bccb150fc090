"""
Azure VM Export shared library.
"""
# Import constants module for easy access
from . import constants
from .config import (
    ConfigError,
    ExportSettings,
    generate_sample_config,
    load_config,
    parse_id_list,
)
from .constants import (
    EXPORT_COLUMNS,
    IP_SEPARATOR,
    OUTPUT_MODE_COMBINED,
    OUTPUT_MODE_PER_SUBSCRIPTION,
    PROVIDER_AZURE,
)
from .models import ExportRow, SubscriptionResult, VMSizeSpec, join_ips, total_disk_size_gb
from .utils import (
    AuthError,
    ProgressTracker,
    check_and_raise_auth_error,
    is_auth_error,
    setup_logging,
    write_csv,
)

__all__ = [
    # Constants
    'constants',
    'EXPORT_COLUMNS',
    'IP_SEPARATOR',
    'OUTPUT_MODE_COMBINED',
    'OUTPUT_MODE_PER_SUBSCRIPTION',
    'PROVIDER_AZURE',
    # Config
    'ConfigError',
    'ExportSettings',
    'generate_sample_config',
    'load_config',
    'parse_id_list',
    # Models
    'ExportRow',
    'SubscriptionResult',
    'VMSizeSpec',
    'join_ips',
    'total_disk_size_gb',
    # Utils
    'AuthError',
    'ProgressTracker',
    'check_and_raise_auth_error',
    'is_auth_error',
    'setup_logging',
    'write_csv',
]
