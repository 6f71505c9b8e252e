"""Persistent disks of GKE clusters and the labels the cost metrics need from them."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from cloudcost_exporter.google.gke.machinespec import GKE_CLUSTER_LABEL, GKE_REGION_LABEL

logger = logging.getLogger(__name__)

BOOT_DISK_LABEL = "goog-gke-node"
PVC_NAMESPACE_KEY = "kubernetes.io/created-for/pvc/namespace"
PVC_NAMESPACE_SHORT_KEY = "kubernetes.io-created-for/pvc-namespace"
PV_NAME_KEY = "kubernetes.io/created-for/pv/name"
PV_NAME_SHORT_KEY = "kubernetes.io-created-for/pv-name"
IDLE_DISK = "idle"
IN_USE_DISK = "in-use"


@dataclass
class DiskResource:
    """A disk as the compute API lists it."""

    name: str = ""
    zone: str = ""
    type: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    description: str = ""
    size_gb: int = 0
    users: list[str] = field(default_factory=list)


def extract_labels_from_desc(description: str) -> dict[str, str]:
    """Parse the JSON object GKE stores in a disk's description; empty gives {}."""
    if not description:
        return {}
    parsed = json.loads(description)
    if not isinstance(parsed, dict) or not all(
        isinstance(value, str) for value in parsed.values()
    ):
        raise ValueError("disk description is not a JSON object of strings")
    return parsed


def _coalesce(values: dict[str, str], *keys: str) -> str:
    """The value of the first key present, or an empty string."""
    for key in keys:
        if key in values:
            return values[key]
    return ""


@dataclass
class Disk:
    """A disk with the attributes used to label its cost."""

    cluster: str = ""
    project: str = ""
    disk_name: str = ""  # fallback when the description holds no volume name
    zone: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    description: dict[str, str] = field(default_factory=dict)
    disk_type_url: str = ""
    size: int = 0
    users: list[str] = field(default_factory=list)

    @classmethod
    def from_resource(cls, resource: DiskResource, project: str) -> Disk:
        labels = dict(resource.labels)
        disk = cls(
            cluster=labels.get(GKE_CLUSTER_LABEL, ""),
            project=project,
            disk_name=resource.name,
            zone=resource.zone,
            labels=labels,
            disk_type_url=resource.type,
            size=resource.size_gb,
            users=list(resource.users),
        )
        try:
            disk.description = extract_labels_from_desc(resource.description)
        except ValueError as err:
            logger.error("error extracting labels from disk(%s) description: %s", disk.name(), err)
        return disk

    def namespace(self) -> str:
        """Namespace of the claim the disk was created for, or an empty string."""
        return _coalesce(self.description, PVC_NAMESPACE_KEY, PVC_NAMESPACE_SHORT_KEY)

    def region(self) -> str:
        """Region of the disk, taken from its location label or its zone."""
        zone = self.labels.get(GKE_REGION_LABEL, "")
        if not zone:
            zone = self.zone[self.zone.rfind("/") + 1:]
        if not zone:
            return ""
        if zone.count("-") < 2:
            return zone
        return zone[: zone.rfind("-")]

    def name(self) -> str:
        """The persistent volume name if known, else the disk's own name."""
        return _coalesce(self.description, PV_NAME_KEY, PV_NAME_SHORT_KEY) or self.disk_name

    def storage_class(self) -> str:
        """Last path segment of the disk type URL."""
        return self.disk_type_url.split("/")[-1]

    def disk_type(self) -> str:
        return "boot_disk" if BOOT_DISK_LABEL in self.labels else "persistent_volume"

    def use_status(self) -> str:
        """Whether the disk is attached to anything."""
        return IN_USE_DISK if self.users else IDLE_DISK