"""
Data models for the Azure VM inventory exporter.
"""
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

from .constants import EXPORT_COLUMNS, IP_SEPARATOR


@dataclass(frozen=True)
class VMSizeSpec:
    """Entry of the location-scoped VM size catalog."""
    name: str
    cores: Optional[int] = None
    memory_mb: Optional[int] = None


@dataclass
class ExportRow:
    """
    One flattened VM record, written as a single CSV row.

    Field order matches EXPORT_COLUMNS.
    """
    vm_name: str
    vm_type: str
    cpu: Optional[int]
    ram: Optional[int]
    disk_size_gb: int
    region: str
    resource_group_name: str
    private_ips: str = ""
    public_ips: str = ""

    def to_dict(self) -> Dict:
        """Convert to a dict keyed by export column name."""
        values = [
            self.vm_name,
            self.vm_type,
            self.cpu,
            self.ram,
            self.disk_size_gb,
            self.region,
            self.resource_group_name,
            self.private_ips,
            self.public_ips,
        ]
        return dict(zip(EXPORT_COLUMNS, values))


@dataclass
class SubscriptionResult:
    """Rows gathered from one subscription pass, plus the failure if any."""
    subscription_id: str
    rows: List[ExportRow] = field(default_factory=list)
    error: Optional[str] = None
    authenticated: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return asdict(self)


def total_disk_size_gb(os_disk_gb: Optional[int], data_disks_gb: List[Optional[int]]) -> int:
    """OS disk plus every data disk; unknown sizes count as zero."""
    return int(os_disk_gb or 0) + sum(int(size or 0) for size in data_disks_gb)


def join_ips(addresses: List[str]) -> str:
    """Join addresses for an IP column, dropping empty entries."""
    return IP_SEPARATOR.join(a for a in addresses if a)
