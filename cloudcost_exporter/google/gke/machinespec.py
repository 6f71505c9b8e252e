"""Compute instances reduced to what pricing them needs."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

GKE_CLUSTER_LABEL = "goog-k8s-cluster-name"
GKE_REGION_LABEL = "goog-k8s-cluster-location"

_WORD_IN = re.compile(r"\bin\b", re.ASCII)


@dataclass
class InstanceResource:
    """An instance as the compute API lists it."""

    name: str = ""
    zone: str = ""
    machine_type: str = ""
    provisioning_model: str = ""
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class MachineSpec:
    """A slimmed-down compute instance."""

    instance: str = ""
    zone: str = ""
    region: str = ""
    family: str = ""
    machine_type: str = ""
    spot_instance: bool = False
    labels: dict[str, str] = field(default_factory=dict)
    price_tier: str = ""

    @classmethod
    def from_instance(cls, instance: InstanceResource) -> MachineSpec:
        zone = instance.zone[instance.zone.rfind("/") + 1:]
        machine_type = get_machine_type_from_url(instance.machine_type)
        spot = is_spot_instance(instance.provisioning_model)
        return cls(
            instance=instance.name,
            zone=zone,
            region=get_region_from_zone(zone),
            family=get_machine_family(machine_type),
            machine_type=machine_type,
            spot_instance=spot,
            labels=dict(instance.labels),
            price_tier=price_tier_for_instance(spot),
        )

    def cluster_name(self) -> str:
        """The GKE cluster the instance belongs to, or an empty string."""
        return self.labels.get(GKE_CLUSTER_LABEL, "")


def is_spot_instance(model: str) -> bool:
    return model == "SPOT"


def get_region_from_zone(zone: str) -> str:
    """Drop the zone suffix: "us-central1-a" gives "us-central1"."""
    index = zone.rfind("-")
    if index < 0:
        raise ValueError(f"zone {zone!r} has no region part")
    return zone[:index]


def get_machine_type_from_url(url: str) -> str:
    return url[url.rfind("/") + 1:]


def get_machine_family(machine_type: str) -> str:
    """The lower-cased part before the first dash, or "" when there is no dash."""
    if "-" not in machine_type:
        logger.info("Machine type %s doesn't contain a -", machine_type)
        return ""
    return machine_type.split("-")[0].lower()


def strip_out_key_from_description(description: str) -> str:
    """The resource part of a SKU description, before "running in" or a location."""
    index = description.find("running in")
    if index > 0:
        return description[:index].strip(" ")
    parts = description.split("Commitment v1:")
    if len(parts) == 1:
        logger.info("No running in or commitment found in description: %s", description)
        return ""
    rest = parts[1]
    # Match "in" as a whole word so that places such as Berlin do not count.
    match = _WORD_IN.search(rest)
    if match is None:
        logger.info("No in found in description: %s", description)
        return ""
    return rest[: match.start()].strip(" ")


def price_tier_for_instance(spot_instance: bool) -> str:
    """The price tier label for an instance: "spot" or "ondemand"."""
    if spot_instance:
        return "spot"
    # Committed-use instances are not told apart yet.
    return "ondemand"