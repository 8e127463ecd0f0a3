"""
Data models for the server provisioner.
"""

import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional

from errors import ParseError

# e.g. https://compute.googleapis.com/compute/v1/projects/my-project/zones/us-central1-a
_ZONE_URL_PATTERN = re.compile(r"^https://[^/]+/compute/[^/]+/projects/([^/]+)/zones/([^/]+)")


@dataclass(frozen=True)
class ZoneLocator:
    """Zone scope for compute calls."""

    project_id: str
    zone_id: str


@dataclass(frozen=True)
class RegionLocator:
    """Region scope for compute calls (static addresses, region operations)."""

    project_id: str
    region_id: str


@dataclass(frozen=True)
class InstanceLocator:
    """Identifies exactly one compute instance."""

    project_id: str
    zone_id: str
    instance_id: str

    @property
    def zone_locator(self) -> ZoneLocator:
        return ZoneLocator(project_id=self.project_id, zone_id=self.zone_id)

    @property
    def region_locator(self) -> RegionLocator:
        return RegionLocator(
            project_id=self.project_id, region_id=Zone(self.zone_id).region_id
        )


class Zone:
    """A cloud zone. The zone name carries its region as a prefix."""

    def __init__(self, zone_id: str):
        self.id = zone_id

    @property
    def region_id(self) -> str:
        # us-central1-a -> us-central1
        region, sep, suffix = self.id.rpartition("-")
        if not sep or not region or not suffix:
            raise ParseError(f"Zone name does not encode a region: {self.id!r}")
        return region

    def __eq__(self, other) -> bool:
        return isinstance(other, Zone) and other.id == self.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        return f"Zone({self.id!r})"


@dataclass
class ZoneOption:
    """A zone offered for new servers."""

    cloud_location: Zone
    available: bool


@dataclass
class Project:
    id: str
    name: str


@dataclass
class BillingAccount:
    id: str
    name: str


def parse_zone_url(url: str) -> ZoneLocator:
    """
    Parse a zone-scoped resource URL into its project and zone.

    Args:
        url: Zone URL as returned in an instance's ``zone`` field

    Returns:
        ZoneLocator for the URL

    Raises:
        ParseError: If the URL does not match the zone URL pattern
    """
    match = _ZONE_URL_PATTERN.match(url or "")
    if not match:
        raise ParseError(f"Not a zone URL: {url!r}")
    return ZoneLocator(project_id=match.group(1), zone_id=match.group(2))


class InstallState(IntEnum):
    """Installation progress. Success-path states are ordered by value."""

    UNKNOWN = 0
    INSTANCE_CREATED = 1
    IP_ALLOCATED = 2
    INSTANCE_RUNNING = 3
    CERTIFICATE_CREATED = 4
    COMPLETED = 5
    FAILED = 6
    CANCELED = 7

    @property
    def is_final(self) -> bool:
        return self in _FINAL_STATES

    @property
    def completion_fraction(self) -> float:
        return _COMPLETION_FRACTIONS.get(self, 0.0)


_FINAL_STATES = frozenset(
    {InstallState.COMPLETED, InstallState.FAILED, InstallState.CANCELED}
)

_COMPLETION_FRACTIONS = {
    InstallState.UNKNOWN: 0.01,
    InstallState.INSTANCE_CREATED: 0.12,
    InstallState.IP_ALLOCATED: 0.14,
    InstallState.INSTANCE_RUNNING: 0.4,
    InstallState.CERTIFICATE_CREATED: 0.7,
    InstallState.COMPLETED: 1.0,
}


@dataclass(frozen=True)
class ManagementEndpoint:
    """Management API exposed by an installed server."""

    api_url: str
    cert_sha256: str  # certificate fingerprint, hex


@dataclass
class InstanceSpecification:
    """Instance parameters for the direct instance API."""

    install_command: str
    size: str
    image: str
    tags: List[str] = field(default_factory=list)


@dataclass
class InstanceInfo:
    """Instance as returned by the direct instance API."""

    id: str
    status: str  # "PROVISIONING", "RUNNING", "STOPPING", "STOPPED"
    tags: List[str]
    zone_id: str
    public_ipv4: Optional[str] = None
    raw: Dict = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Dict) -> "InstanceInfo":
        try:
            address = (
                data.get("networkInterfaces", {})
                .get("primaryV4Address", {})
                .get("address")
            )
            return cls(
                id=data["id"],
                status=data.get("status", "PROVISIONING"),
                tags=list(data.get("tags") or []),
                zone_id=(data.get("zone") or {}).get("id", ""),
                public_ipv4=address,
                raw=data,
            )
        except (KeyError, AttributeError, TypeError) as e:
            raise ParseError(f"Malformed instance: {data!r}") from e
