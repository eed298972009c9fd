"""Metric catalog for the NVML exporter.

Declares the device attributes the exporter reads and the fixed, ordered set
of metric families built from them. The declaration order of ``CATALOG`` is
the order families appear in the exposition output.
"""

import enum
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

LABEL_NAMES = ("name", "pci", "uuid")


class Attribute(enum.Enum):
    """A single value that can be read from a device."""

    # Identity
    NAME = "name"
    PCI_BUS_ID = "pci_bus_id"
    UUID = "uuid"

    # Measurements
    FAN_SPEED = "fan_speed"
    MEMORY_INFO = "memory_info"
    PCI_REPLAY = "pci_replay"
    PERFORMANCE_STATE = "performance_state"
    POWER_USAGE = "power_usage"
    POWER_LIMIT = "power_limit"
    TOTAL_ENERGY = "total_energy"


IDENTITY_ATTRIBUTES = (Attribute.NAME, Attribute.PCI_BUS_ID, Attribute.UUID)


@dataclass(frozen=True)
class MetricDefinition:
    """Describes one exported metric family.

    ``scale`` is the unit normalization factor applied to the raw library
    value (e.g. 1000 to go from watts to milliwatts). ``monotonic`` marks
    counters, which are still exposed with a gauge type. ``component`` names
    the field to take from a composite raw value such as the memory info
    struct; families sharing an attribute are served by a single read.
    """

    name: str
    help: str
    attribute: Attribute
    scale: int = 1
    monotonic: bool = False
    component: str | None = None

    def select(self, raw: Any) -> Any:
        """Pick this family's component out of a raw library value.

        Raises:
            ValueError: If the raw value lacks the component.
        """
        if self.component is None:
            return raw
        try:
            return getattr(raw, self.component)
        except AttributeError as e:
            msg = f"Raw value {raw!r} has no {self.component} for {self.name}"
            raise ValueError(msg) from e

    def normalize(self, raw: int | float | Decimal) -> int:
        """Apply the unit rule to a raw library value.

        Uses decimal arithmetic so that e.g. 0.215 W becomes exactly 215 mW.

        Raises:
            ValueError: If the raw value is not a finite number.
        """
        if isinstance(raw, bool):
            msg = f"Boolean is not a valid value for {self.name}"
            raise ValueError(msg)
        try:
            value = Decimal(str(raw)) * self.scale
            return int(value.to_integral_value())
        except (InvalidOperation, OverflowError) as e:
            msg = f"Invalid raw value {raw!r} for {self.name}"
            raise ValueError(msg) from e


CATALOG: tuple[MetricDefinition, ...] = (
    MetricDefinition(
        "nvml_fan_speed",
        "Fan speed (percent)",
        Attribute.FAN_SPEED,
    ),
    MetricDefinition(
        "nvml_memory_free_bytes",
        "Free Memory",
        Attribute.MEMORY_INFO,
        component="free",
    ),
    MetricDefinition(
        "nvml_memory_total_bytes",
        "Total Memory",
        Attribute.MEMORY_INFO,
        component="total",
    ),
    MetricDefinition(
        "nvml_memory_used_bytes",
        "Used Memory",
        Attribute.MEMORY_INFO,
        component="used",
    ),
    MetricDefinition(
        "nvml_pci_replay",
        "PCIe replay count",
        Attribute.PCI_REPLAY,
        monotonic=True,
    ),
    MetricDefinition(
        "nvml_performance_state",
        "Performance State (between 15 (low) and 0 (high))",
        Attribute.PERFORMANCE_STATE,
    ),
    MetricDefinition(
        "nvml_power_usage_current_mw",
        "Current power usage (mW)",
        Attribute.POWER_USAGE,
        scale=1000,
    ),
    MetricDefinition(
        "nvml_power_usage_max_mw",
        "Enforced power limit (mW)",
        Attribute.POWER_LIMIT,
        scale=1000,
    ),
    MetricDefinition(
        "nvml_power_used_total_mj",
        "Energy used in total (mJ)",
        Attribute.TOTAL_ENERGY,
        scale=1000,
        monotonic=True,
    ),
)
