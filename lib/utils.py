"""
Utility functions for the Azure VM inventory exporter.

Logging Level Standards:
------------------------
- ERROR: Failures that stop an entire subscription
         "Failed to collect from subscription {id}: {e}"
- WARNING: Partial failures (a resource group or a single VM skipped)
           "Skipping VM {name} in {rg}: {e}"
- INFO: Progress messages, resource counts
        "Found 3 VMs in resource group rg-web"
        "Collecting VMs from subscription..."
- DEBUG: Per-item detail that doesn't affect the exported rows
         "Public IP {id} has no address assigned"
"""
import csv
import hashlib
import io
import logging
import os
import re
import sys
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

logger = logging.getLogger(__name__)


# =============================================================================
# Progress Tracking
# =============================================================================

class ProgressTracker:
    """
    Progress tracker for a subscription-by-subscription export with rich display.

    Falls back to simple print statements if stdout is not a TTY
    (e.g., when piping output or running under cron).

    Usage:
        with ProgressTracker("Azure VM", total_subscriptions=2) as tracker:
            for sub_id in subscription_ids:
                tracker.start_subscription(sub_id)

                for rg in resource_groups:
                    tracker.update_task(f"Resource group {rg}")
                    ...
                    tracker.add_rows(1, disk_gb)

                tracker.complete_subscription(succeeded=True)
    """

    def __init__(
        self,
        provider: str,
        total_subscriptions: int = 0,
        show_progress: bool = True
    ):
        self.provider = provider
        self.total_subscriptions = total_subscriptions
        self.show_progress = show_progress and sys.stdout.isatty()

        # Counters
        self.completed_subscriptions = 0
        self.failed_subscriptions = 0
        self.total_rows = 0
        self.total_capacity_gb = 0.0
        self.current_subscription = ""
        self.current_task = ""

        self._console: Optional[Console] = None
        self._progress: Optional[Progress] = None
        self._main_task: Optional[TaskID] = None
        self._use_rich = self.show_progress

    def __enter__(self):
        if self._use_rich:
            self._console = Console()
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("[bold blue]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=self._console,
                transient=False,
            )
            self._main_task = self._progress.add_task(
                f"{self.provider} Export", total=self.total_subscriptions or 1
            )
            self._progress.start()
        else:
            print(f"\n{'='*60}")
            print(f"{self.provider} Export Starting")
            print(f"{'='*60}")
            if self.total_subscriptions:
                print(f"Subscriptions: {self.total_subscriptions}")
            print()

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._use_rich:
            assert self._progress is not None
            assert self._console is not None
            self._progress.stop()
            self._console.print()
            self._print_summary_rich()
        else:
            self._print_summary_plain()
        return False

    def start_subscription(self, subscription_id: str, subscription_name: str = ""):
        """Mark the start of processing a subscription."""
        self.current_subscription = subscription_id
        display = f"{subscription_id} ({subscription_name})" if subscription_name else subscription_id
        if self._use_rich:
            assert self._progress is not None
            assert self._main_task is not None
            self._progress.update(
                self._main_task,
                description=f"{self.provider} Subscription: {display}"
            )
        else:
            print(f"\nSubscription: {display}")

    def update_task(self, task_description: str):
        """Update the current task being performed."""
        self.current_task = task_description
        if self._use_rich:
            assert self._progress is not None
            assert self._main_task is not None
            self._progress.update(
                self._main_task,
                description=f"{self.provider} {task_description}"
            )
        else:
            print(f"  {task_description}")

    def add_rows(self, count: int, capacity_gb: float = 0.0):
        """Add exported rows to the running total."""
        self.total_rows += count
        self.total_capacity_gb += capacity_gb

    def complete_subscription(self, succeeded: bool = True):
        """Mark a subscription as complete."""
        self.completed_subscriptions += 1
        if not succeeded:
            self.failed_subscriptions += 1
        if self._use_rich:
            assert self._progress is not None
            assert self._main_task is not None
            self._progress.update(self._main_task, advance=1)
        else:
            status = "Complete" if succeeded else "Failed"
            print(f"  [{self.current_subscription}] {status} - Running total: {self.total_rows:,} VMs")

    def _print_summary_rich(self):
        """Print a formatted summary using rich."""
        table = Table(title=f"{self.provider} Export Summary", show_header=False)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Subscriptions", str(self.completed_subscriptions))
        if self.failed_subscriptions:
            table.add_row("Failed", str(self.failed_subscriptions), style="red")
        table.add_row("VMs Exported", f"{self.total_rows:,}")
        table.add_row("Total Disk", f"{self.total_capacity_gb:,.0f} GB")

        assert self._console is not None
        self._console.print(Panel(table))

    def _print_summary_plain(self):
        """Print a plain text summary."""
        print(f"\n{'='*60}")
        print(f"{self.provider} Export Complete")
        print(f"{'='*60}")
        print(f"  Subscriptions:   {self.completed_subscriptions}")
        if self.failed_subscriptions:
            print(f"  Failed:          {self.failed_subscriptions}")
        print(f"  VMs Exported:    {self.total_rows:,}")
        print(f"  Total Disk:      {self.total_capacity_gb:,.0f} GB")
        print()


def generate_run_id() -> str:
    """Generate a unique run ID."""
    return f"{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{str(uuid.uuid4())[:8]}"


# =============================================================================
# Auth Errors
# =============================================================================

class AuthError(Exception):
    """Custom exception for authentication/authorization failures.

    Raised when a session cannot be established for a subscription, or when
    a subscription-level listing call is rejected, so that the subscription
    is abandoned rather than exported with silently missing groups.
    """
    def __init__(self, message: str, provider: str, original_error: Optional[Exception] = None):
        self.provider = provider
        self.original_error = original_error
        super().__init__(message)


# Azure error status codes that indicate auth/permission issues
AZURE_AUTH_STATUS_CODES = {401, 403}

# azure-identity raises these when no token can be obtained
AZURE_CREDENTIAL_EXCEPTION_NAMES = {'ClientAuthenticationError', 'CredentialUnavailableError'}


def is_auth_error(exc: Exception) -> bool:
    """
    Check if an exception represents an authentication/authorization error.

    Detects:
    - ClientAuthenticationError / CredentialUnavailableError from azure-identity
    - HttpResponseError with 401/403 status, or auth-related messages

    Args:
        exc: The exception to check

    Returns:
        True if the exception is an authentication/authorization error
    """
    exc_type_name = type(exc).__name__

    if exc_type_name in AZURE_CREDENTIAL_EXCEPTION_NAMES:
        return True

    if exc_type_name == 'HttpResponseError':
        status_code = getattr(exc, 'status_code', None)
        if status_code in AZURE_AUTH_STATUS_CODES:
            return True
        error_msg = str(exc).lower()
        return 'authentication' in error_msg or 'authorizationfailed' in error_msg

    return False


def check_and_raise_auth_error(exc: Exception, context: str, provider: str) -> None:
    """
    Check if exception is an auth error and raise AuthError if so.

    Call this in exception handlers before logging and continuing.

    Args:
        exc: The caught exception
        context: Description of what was being attempted (e.g., "list resource groups")
        provider: Cloud provider name

    Raises:
        AuthError: If exc is an authentication/authorization error
    """
    if is_auth_error(exc):
        raise AuthError(
            f"Authentication/authorization error while trying to {context}: {exc}",
            provider=provider,
            original_error=exc
        ) from exc


# =============================================================================
# Log Redaction
# =============================================================================

def hash_sensitive_id(value: str, prefix: str = "") -> str:
    """
    Hash a sensitive ID using consistent hashing.

    Uses first 8 chars of SHA256 for uniqueness with minimal collision risk.

    Example: 12345678-1234-1234-1234-123456789012 -> id-a3f8b2c1
    """
    if not value:
        return value
    hash_val = hashlib.sha256(value.encode()).hexdigest()[:8]
    return f"{prefix}{hash_val}" if prefix else hash_val


_LOG_REDACT_PATTERNS = [
    # Azure resource paths - hash subscription and resource group, keep provider path
    # Must come before the GUID pattern to match full paths first
    (re.compile(r'(/subscriptions/)([0-9a-f-]{36})(/resourceGroups/)([^/\s]+)', re.IGNORECASE),
     lambda m: f"{m.group(1)}{hash_sensitive_id(m.group(2).lower())}{m.group(3)}{hash_sensitive_id(m.group(4))}"),
    (re.compile(r'(/subscriptions/)([0-9a-f-]{36})(?![/])', re.IGNORECASE),
     lambda m: f"{m.group(1)}{hash_sensitive_id(m.group(2).lower())}"),
    # Bare GUIDs (subscription IDs, tenant IDs)
    (re.compile(r'\b([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})\b', re.IGNORECASE),
     lambda m: f"id-{hash_sensitive_id(m.group(1).lower())}"),
]


def redact_log_message(message: str) -> str:
    """Redact subscription IDs and resource group names from a log message."""
    if not message:
        return message

    for pattern, replacer in _LOG_REDACT_PATTERNS:
        message = pattern.sub(replacer, message)

    return message


class RedactingFilter(logging.Filter):
    """
    Logging filter that redacts sensitive data from log messages.

    Uses consistent hashing so the same ID produces the same hash,
    allowing correlation between log lines of one run.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = redact_log_message(str(record.msg))
        if record.args:
            record.args = tuple(
                redact_log_message(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


def setup_logging(level: str = "INFO", output_dir: Optional[str] = None) -> logging.Logger:
    """
    Setup logging configuration with console and optional file output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        output_dir: If provided, also write logs to a file in this directory

    Returns:
        Logger instance
    """
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers to avoid duplicates
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')
        log_file = os.path.join(output_dir, f"vm_export_{timestamp}.log")

        file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        # Persisted logs never carry raw subscription IDs
        file_handler.addFilter(RedactingFilter())
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to: {log_file}")

    return logging.getLogger(__name__)


# =============================================================================
# Output
# =============================================================================

def is_blob_url(path: str) -> bool:
    """True for https://<account>.blob.core.windows.net/... destinations."""
    return path.startswith("https://") and ".blob.core.windows.net" in path


def write_csv(data: List[Dict], filepath: str, fieldnames: List[str], credential=None) -> None:
    """
    Write rows to a CSV file, replacing any existing content.

    The header is always written, so an export with no VMs still produces
    a well-formed file. None values become empty cells.
    """
    if is_blob_url(filepath):
        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(data)
        write_to_blob(output.getvalue(), filepath, credential=credential)
        return

    with open(filepath, 'w', newline='', encoding='utf-8') as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(data)
    print(f"Wrote {len(data)} rows to {filepath}")


def write_to_blob(data: str, blob_url: str, credential=None) -> None:
    """Write text to Azure Blob Storage, overwriting the blob."""
    from azure.identity import DefaultAzureCredential
    from azure.storage.blob import BlobClient

    try:
        blob_client = BlobClient.from_blob_url(blob_url, credential=credential or DefaultAzureCredential())
        blob_client.upload_blob(data.encode('utf-8'), overwrite=True)
        print(f"Wrote {blob_url}")
    except Exception as e:
        print(f"ERROR: Failed to write to Azure Blob ({blob_url}): {e}")
        raise


def per_subscription_path(output_path: str, subscription_id: str) -> str:
    """
    Derive the output path for one subscription's file.

    Example: reports/vms.csv -> reports/vms_<subscription-id>.csv
    """
    if is_blob_url(output_path):
        base, sep, query = output_path.partition('?')
    else:
        base, sep, query = output_path, '', ''

    head, tail = base.rsplit('/', 1) if '/' in base else ('', base)
    stem, dot, suffix = tail.rpartition('.')
    if not dot:
        stem, suffix = tail, ''
    new_tail = f"{stem}_{subscription_id}" + (f".{suffix}" if dot else '')
    new_base = f"{head}/{new_tail}" if head else new_tail
    return f"{new_base}{sep}{query}"


def print_summary_table(results: List[Dict]) -> None:
    """Print a per-subscription summary table to console."""
    if not results:
        print("No subscriptions processed.")
        return

    headers = ["Subscription", "VMs", "Status"]
    rows = []
    for r in results:
        rows.append([
            r.get("subscription_id", ""),
            str(len(r.get("rows", []))),
            "OK" if not r.get("error") else "FAILED",
        ])

    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    header_line = " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
    separator = "-+-".join("-" * w for w in widths)

    print("\n" + header_line)
    print(separator)
    for row in rows:
        print(" | ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)))

    total_count = sum(len(r.get("rows", [])) for r in results)
    print(separator)
    print(f"{'TOTAL'.ljust(widths[0])} | {str(total_count).ljust(widths[1])} |")
    print()
