"""
Constants for the Azure VM inventory exporter.

This module defines all magic strings and numbers used across the codebase
to prevent typos, ensure consistency, and make maintenance easier.
"""

# =============================================================================
# Cloud Providers
# =============================================================================

PROVIDER_AZURE = "azure"

# =============================================================================
# Export Format
# =============================================================================

# Column order is fixed; ExportRow.to_dict() keys must match exactly
EXPORT_COLUMNS = [
    "VMName",
    "VMType",
    "CPU",
    "RAM",
    "DiskSizeGB",
    "Region",
    "ResourceGroupName",
    "PrivateIPs",
    "PublicIPs",
]

IP_SEPARATOR = ", "

DEFAULT_OUTPUT_PATH = "vm_inventory.csv"

# =============================================================================
# Output Modes
# =============================================================================

OUTPUT_MODE_COMBINED = "combined"
OUTPUT_MODE_PER_SUBSCRIPTION = "per-subscription"

OUTPUT_MODES = [OUTPUT_MODE_COMBINED, OUTPUT_MODE_PER_SUBSCRIPTION]

# =============================================================================
# Subscription States
# =============================================================================

SUBSCRIPTION_STATE_ENABLED = "Enabled"

# =============================================================================
# Exit Codes
# =============================================================================

EXIT_OK = 0
EXIT_ALL_FAILED = 1
EXIT_CONFIG_ERROR = 2
