#!/usr/bin/env python3
"""
Azure VM Export - Virtual Machine Inventory Collector

Walks every resource group of the given subscriptions and exports one CSV
row per virtual machine: size, CPU/RAM, total disk capacity, region,
resource group and private/public IP addresses.

Usage:
    python3 azure_vm_export.py --subscriptions <id1>,<id2> --output vms.csv
    python3 azure_vm_export.py --all-subscriptions --output-mode per-subscription
    python3 azure_vm_export.py --interactive
    python3 azure_vm_export.py --output https://myaccount.blob.core.windows.net/reports/vms.csv
"""
import argparse
import logging
import sys
from typing import Dict, Iterator, List, Optional, Tuple

from azure.identity import DefaultAzureCredential
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.resource import ResourceManagementClient
from azure.mgmt.subscription import SubscriptionClient

from lib.config import (
    ConfigError,
    ExportSettings,
    generate_sample_config,
    load_config,
    prompt_for_missing,
)
from lib.constants import (
    EXIT_ALL_FAILED,
    EXIT_CONFIG_ERROR,
    EXIT_OK,
    EXPORT_COLUMNS,
    OUTPUT_MODE_PER_SUBSCRIPTION,
    OUTPUT_MODES,
    PROVIDER_AZURE,
    SUBSCRIPTION_STATE_ENABLED,
)
from lib.models import ExportRow, SubscriptionResult, VMSizeSpec, join_ips, total_disk_size_gb
from lib.utils import (
    AuthError,
    ProgressTracker,
    check_and_raise_auth_error,
    generate_run_id,
    is_auth_error,
    per_subscription_path,
    print_summary_table,
    setup_logging,
    write_csv,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Authentication & Subscriptions
# =============================================================================

def get_credential():
    """Get Azure credential (CLI login, managed identity or environment)."""
    return DefaultAzureCredential()


def _enum_value(value):
    """SDK enums are str subclasses; return the plain value."""
    return getattr(value, 'value', value)


def get_subscriptions(credential) -> List[Dict]:
    """Get all accessible subscriptions."""
    subscriptions = []
    with SubscriptionClient(credential) as subscription_client:
        for sub in subscription_client.subscriptions.list():
            subscriptions.append({
                'id': sub.subscription_id,
                'name': sub.display_name,
                'state': _enum_value(sub.state)
            })

    return subscriptions


class AzureSession:
    """
    Management clients scoped to one subscription.

    Entering the session verifies the credential can read the subscription.
    An auth failure there raises AuthError; any other error (404, 5xx)
    propagates unchanged. Leaving it closes every client, on success and on
    error alike.
    """

    def __init__(self, credential, subscription_id: str):
        self.credential = credential
        self.subscription_id = subscription_id
        self.compute: Optional[ComputeManagementClient] = None
        self.network: Optional[NetworkManagementClient] = None
        self.resources: Optional[ResourceManagementClient] = None
        self._clients: list = []

    def __enter__(self):
        try:
            subscription_client = SubscriptionClient(self.credential)
            self._clients.append(subscription_client)
            subscription_client.subscriptions.get(self.subscription_id)

            self.compute = ComputeManagementClient(self.credential, self.subscription_id)
            self._clients.append(self.compute)
            self.network = NetworkManagementClient(self.credential, self.subscription_id)
            self._clients.append(self.network)
            self.resources = ResourceManagementClient(self.credential, self.subscription_id)
            self._clients.append(self.resources)
        except Exception as e:
            self.close()
            if not is_auth_error(e):
                raise
            raise AuthError(
                f"Failed to open session for subscription {self.subscription_id}: {e}",
                provider=PROVIDER_AZURE,
                original_error=e
            ) from e
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self):
        """Close all clients opened so far."""
        while self._clients:
            client = self._clients.pop()
            try:
                client.close()
            except Exception as e:
                logger.debug(f"Error closing {type(client).__name__}: {e}")


def _parse_resource_id(resource_id: str) -> Tuple[str, str]:
    """Extract (resource group, resource name) from an Azure resource ID."""
    parts = resource_id.strip('/').split('/')
    lowered = [p.lower() for p in parts]
    try:
        rg = parts[lowered.index('resourcegroups') + 1]
    except (ValueError, IndexError):
        raise ValueError(f"No resource group in resource ID: {resource_id}") from None
    return rg, parts[-1]


# =============================================================================
# VM Size Catalog
# =============================================================================

class SizeCatalog:
    """VM size lookups, listed once per location for a subscription pass."""

    def __init__(self, compute_client: ComputeManagementClient):
        self._client = compute_client
        self._by_location: Dict[str, Dict[str, VMSizeSpec]] = {}

    def lookup(self, location: Optional[str], size_name: Optional[str]) -> Optional[VMSizeSpec]:
        if not location or not size_name:
            return None

        key = location.lower()
        if key not in self._by_location:
            self._by_location[key] = self._list_sizes(location)
        return self._by_location[key].get(size_name.lower())

    def _list_sizes(self, location: str) -> Dict[str, VMSizeSpec]:
        try:
            return {
                size.name.lower(): VMSizeSpec(
                    name=size.name,
                    cores=size.number_of_cores,
                    memory_mb=size.memory_in_mb,
                )
                for size in self._client.virtual_machine_sizes.list(location)
                if size.name
            }
        except Exception as e:
            logger.warning(f"Failed to list VM sizes in {location}, CPU/RAM left empty: {e}")
            return {}


# =============================================================================
# Network Lookups
# =============================================================================

def get_vm_network_interfaces(network_client, resource_group: str, vm_id: str) -> list:
    """NICs in the resource group whose VM back-reference is this VM."""
    vm_id = vm_id.lower()
    return [
        nic for nic in network_client.network_interfaces.list(resource_group)
        if nic.virtual_machine and nic.virtual_machine.id
        and nic.virtual_machine.id.lower() == vm_id
    ]


def resolve_public_ip(network_client, public_ip_id: str) -> Optional[str]:
    """Look up the address of a public IP resource; None if unallocated."""
    rg, name = _parse_resource_id(public_ip_id)
    public_ip = network_client.public_ip_addresses.get(rg, name)
    if not public_ip.ip_address:
        logger.debug(f"Public IP {name} has no address assigned")
    return public_ip.ip_address


def collect_ip_addresses(network_client, network_interfaces: list) -> Tuple[List[str], List[str]]:
    """Private and public addresses, in NIC / IP configuration order."""
    private_ips: List[str] = []
    public_ips: List[str] = []

    for nic in network_interfaces:
        for ip_config in nic.ip_configurations or []:
            if ip_config.private_ip_address:
                private_ips.append(ip_config.private_ip_address)

            public_ref = ip_config.public_ip_address
            if public_ref and public_ref.id:
                address = resolve_public_ip(network_client, public_ref.id)
                if address:
                    public_ips.append(address)

    return private_ips, public_ips


# =============================================================================
# VM Collector
# =============================================================================

def build_export_row(session: AzureSession, vm, resource_group: str, size_catalog: SizeCatalog) -> ExportRow:
    """Join size, disk and network details of one VM into an ExportRow."""
    vm_size = _enum_value(vm.hardware_profile.vm_size) if vm.hardware_profile else None

    os_disk_size = None
    data_disk_sizes: List[Optional[int]] = []
    if vm.storage_profile:
        if vm.storage_profile.os_disk:
            os_disk_size = vm.storage_profile.os_disk.disk_size_gb
        data_disk_sizes = [dd.disk_size_gb for dd in vm.storage_profile.data_disks or []]

    size_spec = size_catalog.lookup(vm.location, vm_size)
    if size_spec is None:
        logger.debug(f"No size catalog entry for {vm_size} in {vm.location}")

    nics = get_vm_network_interfaces(session.network, resource_group, vm.id)
    private_ips, public_ips = collect_ip_addresses(session.network, nics)

    return ExportRow(
        vm_name=vm.name,
        vm_type=vm_size or '',
        cpu=size_spec.cores if size_spec else None,
        ram=size_spec.memory_mb if size_spec else None,
        disk_size_gb=total_disk_size_gb(os_disk_size, data_disk_sizes),
        region=vm.location or '',
        resource_group_name=resource_group,
        private_ips=join_ips(private_ips),
        public_ips=join_ips(public_ips),
    )


def iter_export_rows(
    session: AzureSession,
    tracker: Optional[ProgressTracker] = None,
    regions: Optional[List[str]] = None
) -> Iterator[ExportRow]:
    """
    Yield one ExportRow per VM in the session's subscription.

    Resource groups and VMs are walked in listing order. A VM whose details
    cannot be fetched is logged and skipped; a resource group whose VM
    listing fails is skipped unless the failure is an auth error.

    Args:
        session: Open AzureSession
        tracker: Optional progress tracker
        regions: Optional lowercase region names to keep
    """
    size_catalog = SizeCatalog(session.compute)
    group_count = 0

    for resource_group in session.resources.resource_groups.list():
        group_count += 1
        rg_name = resource_group.name
        if tracker:
            tracker.update_task(f"Resource group {rg_name}")

        try:
            vms = list(session.compute.virtual_machines.list(rg_name))
        except Exception as e:
            check_and_raise_auth_error(e, f"list VMs in resource group {rg_name}", PROVIDER_AZURE)
            logger.warning(f"Failed to list VMs in resource group {rg_name}: {e}")
            continue

        if not vms:
            logger.info(f"No VMs in resource group {rg_name}")
            continue

        logger.info(f"Found {len(vms)} VMs in resource group {rg_name}")

        for vm in vms:
            if regions and (vm.location or '').lower() not in regions:
                logger.debug(f"Skipping VM {vm.name}: region {vm.location} not selected")
                continue

            try:
                row = build_export_row(session, vm, rg_name, size_catalog)
            except Exception as e:
                logger.warning(f"Skipping VM {getattr(vm, 'name', 'unknown')} in {rg_name}: {e}")
                continue

            logger.info(f"Processed VM {row.vm_name} ({row.vm_type}, {row.region})")
            if tracker:
                tracker.add_rows(1, row.disk_size_gb)
            yield row

    if not group_count:
        logger.info(f"No resource groups in subscription {session.subscription_id}")


def collect_subscription(
    credential,
    subscription_id: str,
    tracker: Optional[ProgressTracker] = None,
    regions: Optional[List[str]] = None
) -> SubscriptionResult:
    """
    Collect every VM row of one subscription.

    Never raises: authentication and top-level failures are logged and
    recorded on the result, which keeps whatever rows were gathered before
    the failure. The session is closed on every path.
    """
    logger.info(f"Collecting VMs from subscription: {subscription_id}")
    result = SubscriptionResult(subscription_id=subscription_id)

    try:
        with AzureSession(credential, subscription_id) as session:
            result.authenticated = True
            for row in iter_export_rows(session, tracker, regions):
                result.rows.append(row)
    except AuthError as e:
        logger.error(f"Authentication/authorization error for subscription {subscription_id}: {e}")
        result.error = str(e)
    except Exception as e:
        logger.error(f"Failed to collect from subscription {subscription_id}: {e}")
        result.error = str(e)

    logger.info(f"Collected {len(result.rows)} VMs from subscription {subscription_id}")
    return result


# =============================================================================
# Export
# =============================================================================

def resolve_subscriptions(settings: ExportSettings, credential) -> List[Dict]:
    """
    Explicit IDs in input order, then discovered enabled subscriptions.

    Returns dicts with 'id' and 'name'; explicit IDs get a display name
    only when discovery also ran and saw them.
    """
    subscriptions = [{'id': sub_id, 'name': ''} for sub_id in settings.subscription_ids]
    if settings.all_subscriptions:
        by_id = {sub['id']: sub for sub in subscriptions}
        for sub in get_subscriptions(credential):
            if sub['id'] in by_id:
                by_id[sub['id']]['name'] = sub['name'] or ''
            elif sub['state'] == SUBSCRIPTION_STATE_ENABLED:
                entry = {'id': sub['id'], 'name': sub['name'] or ''}
                by_id[entry['id']] = entry
                subscriptions.append(entry)
    return subscriptions


def _write_rows(rows: List[ExportRow], path: str, credential) -> bool:
    try:
        write_csv([r.to_dict() for r in rows], path, EXPORT_COLUMNS, credential=credential)
    except Exception as e:
        logger.error(f"Failed to write {path}: {e}")
        return False
    return True


def export_inventory(settings: ExportSettings, credential) -> int:
    """
    Collect all subscriptions in order and write the CSV output.

    Returns:
        Process exit code: EXIT_OK when at least one subscription succeeded,
        EXIT_ALL_FAILED when every subscription failed or nothing could be
        written, EXIT_CONFIG_ERROR when there is nothing to collect.
    """
    try:
        subscriptions = resolve_subscriptions(settings, credential)
    except Exception as e:
        logger.error(f"Failed to list Azure subscriptions: {e}")
        logger.error("Check your credentials have subscription read access.")
        return EXIT_ALL_FAILED

    if not subscriptions:
        logger.error("No subscriptions to export.")
        return EXIT_CONFIG_ERROR

    per_subscription = settings.output_mode == OUTPUT_MODE_PER_SUBSCRIPTION
    logger.info(f"Run ID: {generate_run_id()}")
    logger.info(f"Exporting {len(subscriptions)} subscription(s) ({settings.output_mode} output)")

    results: List[SubscriptionResult] = []
    with ProgressTracker("Azure VM", total_subscriptions=len(subscriptions)) as tracker:
        for sub in subscriptions:
            subscription_id = sub['id']
            tracker.start_subscription(subscription_id, sub['name'])
            result = collect_subscription(credential, subscription_id, tracker, settings.regions)

            if per_subscription and result.authenticated:
                path = per_subscription_path(settings.output_path, subscription_id)
                if not _write_rows(result.rows, path, credential) and result.error is None:
                    result.error = f"Failed to write {path}"

            results.append(result)
            tracker.complete_subscription(succeeded=result.succeeded)

    failed = [r for r in results if not r.succeeded]
    if failed:
        logger.warning(f"Collection failed for {len(failed)} subscription(s)")

    if not per_subscription:
        rows = [row for result in results for row in result.rows]
        if not _write_rows(rows, settings.output_path, credential):
            return EXIT_ALL_FAILED

    print_summary_table([r.to_dict() for r in results])

    return EXIT_ALL_FAILED if len(failed) == len(results) else EXIT_OK


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Azure VM Export - Virtual Machine Inventory to CSV')
    parser.add_argument('--subscriptions', help='Comma-separated subscription IDs, processed in order')
    parser.add_argument(
        '--all-subscriptions',
        action='store_true',
        help='Export every enabled subscription the credential can access'
    )
    parser.add_argument('--output', help='Output CSV path or blob URL (default: vm_inventory.csv)')
    parser.add_argument(
        '--output-mode',
        choices=OUTPUT_MODES,
        help='combined: one file for all subscriptions (default); '
             'per-subscription: one <name>_<subscription-id>.csv per subscription'
    )
    parser.add_argument('--regions', help='Comma-separated list of regions to keep (e.g., eastus,westus2)')
    parser.add_argument('--config', help='YAML config file')
    parser.add_argument('--log-level', help='Logging level (default: INFO)')
    parser.add_argument('--log-dir', help='Also write a redacted log file to this directory')
    parser.add_argument(
        '--interactive',
        action='store_true',
        help='Prompt for output path and subscription IDs when not configured'
    )
    parser.add_argument(
        '--generate-config',
        action='store_true',
        help='Print a sample config file and exit'
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    if args.generate_config:
        print(generate_sample_config())
        return EXIT_OK

    setup_logging(args.log_level or 'INFO')

    try:
        settings = load_config(args)
    except (ConfigError, FileNotFoundError) as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_CONFIG_ERROR

    setup_logging(settings.log_level, output_dir=settings.log_dir)

    if args.interactive:
        prompt_for_missing(settings)

    if not settings.subscription_ids and not settings.all_subscriptions:
        logger.error("No subscription IDs given. Use --subscriptions, --all-subscriptions or --interactive.")
        return EXIT_CONFIG_ERROR

    try:
        credential = get_credential()
    except Exception as e:
        logger.error(f"Failed to authenticate with Azure: {e}")
        logger.error("Check your Azure credentials are configured correctly.")
        return EXIT_ALL_FAILED

    try:
        return export_inventory(settings, credential)
    finally:
        credential.close()


if __name__ == '__main__':
    sys.exit(main())
