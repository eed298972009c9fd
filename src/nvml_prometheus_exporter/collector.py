"""Device snapshot reader.

Enumerates the present devices and reads the full metric catalog for each of
them, turning individual read failures into absences instead of aborting the
scrape. Only a failure to enumerate devices at all is propagated.
"""

import time
from collections.abc import Iterator
from dataclasses import dataclass, field

import structlog

from .catalog import CATALOG, Attribute, MetricDefinition
from .nvml import (
    AttributeReadError,
    DeviceHandle,
    DeviceIdentityError,
    DeviceLibrary,
    RawValue,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DeviceIdentity:
    """Identifying labels of a single GPU."""

    name: str
    pci: str
    uuid: str

    def labels(self) -> list[str]:
        """Label values in exposition order (name, pci, uuid)."""
        return [self.name, self.pci, self.uuid]


@dataclass(frozen=True)
class Reading:
    """One metric value of one device, or its absence.

    ``value`` is None when the device does not report the attribute or the
    read failed; ``error`` then holds the reason.
    """

    device: DeviceIdentity
    definition: MetricDefinition
    value: int | None
    error: str | None = None

    @property
    def absent(self) -> bool:
        return self.value is None


@dataclass
class ScrapeResult:
    """All readings of a single scrape, in device then catalog order.

    ``catalog`` is the set of definitions the scrape was read with; it fixes
    the order of the grouped output.
    """

    devices: list[DeviceIdentity] = field(default_factory=list)
    readings: list[Reading] = field(default_factory=list)
    catalog: tuple[MetricDefinition, ...] = CATALOG

    def present(self) -> Iterator[Reading]:
        """Yield readings that carry a value."""
        return (r for r in self.readings if not r.absent)

    def by_definition(self) -> list[tuple[MetricDefinition, list[Reading]]]:
        """Group present readings per metric definition in the order of ``catalog``.

        Definitions without any present reading are included with an empty
        list; callers decide whether to skip them.
        """
        grouped: dict[MetricDefinition, list[Reading]] = {
            d: [] for d in self.catalog
        }
        for reading in self.present():
            grouped.setdefault(reading.definition, []).append(reading)
        return list(grouped.items())


def canonical_bus_id(bus_id: str) -> str:
    """Normalize a PCI bus id to the ``DDDDDDDD:BB:DD.F`` form.

    The domain is zero-padded to eight hex digits and hex digits are
    upper-cased, so "0000:0a:00.0" becomes "00000000:0A:00.0".

    Raises:
        ValueError: If the bus id has no domain part or it is not hex.
    """
    domain, sep, rest = bus_id.strip().partition(":")
    if not sep or not rest:
        msg = f"Malformed PCI bus id: {bus_id!r}"
        raise ValueError(msg)
    return f"{int(domain, 16):08X}:{rest.upper()}"


class SnapshotReader:
    """Reads a fresh snapshot of all devices on every call to ``collect``.

    Holds no state besides the device library, so concurrent calls are
    independent of each other.
    """

    def __init__(
        self,
        library: DeviceLibrary,
        catalog: tuple[MetricDefinition, ...] = CATALOG,
    ):
        """Initialize the reader.

        Args:
            library: Device library used for enumeration and reads.
            catalog: Metric definitions to read for each device.
        """
        self._library = library
        self._catalog = catalog

    def _read_identity_field(self, handle: DeviceHandle, attribute: Attribute) -> str:
        try:
            value = self._library.read(handle, attribute)
        except AttributeReadError as e:
            raise DeviceIdentityError(str(e)) from e
        if not isinstance(value, str) or not value:
            msg = f"Invalid {attribute.value} value: {value!r}"
            raise DeviceIdentityError(msg)
        return value

    def resolve_identity(self, handle: DeviceHandle) -> DeviceIdentity:
        """Resolve name, PCI bus id and UUID of a device.

        Raises:
            DeviceIdentityError: If any of the three fields cannot be read.
        """
        name = self._read_identity_field(handle, Attribute.NAME)
        bus_id = self._read_identity_field(handle, Attribute.PCI_BUS_ID)
        uuid = self._read_identity_field(handle, Attribute.UUID)
        try:
            pci = canonical_bus_id(bus_id)
        except ValueError as e:
            raise DeviceIdentityError(str(e)) from e
        return DeviceIdentity(name=name, pci=pci, uuid=uuid)

    def _read_raw(
        self,
        handle: DeviceHandle,
        attribute: Attribute,
        raw_values: dict[Attribute, RawValue | AttributeReadError],
    ) -> RawValue:
        if attribute not in raw_values:
            try:
                raw_values[attribute] = self._library.read(handle, attribute)
            except AttributeReadError as e:
                raw_values[attribute] = e
        raw = raw_values[attribute]
        if isinstance(raw, AttributeReadError):
            raise raw
        return raw

    def read_metric(
        self,
        handle: DeviceHandle,
        device: DeviceIdentity,
        definition: MetricDefinition,
        raw_values: dict[Attribute, RawValue | AttributeReadError] | None = None,
    ) -> Reading:
        """Read and normalize one metric; failures become an absence.

        ``raw_values`` holds the raw reads already made for this device in the
        current collection, so families sharing an attribute (free, total and
        used memory) take their values from one read.
        """
        if raw_values is None:
            raw_values = {}
        try:
            raw = self._read_raw(handle, definition.attribute, raw_values)
            value = definition.normalize(definition.select(raw))
        except (AttributeReadError, ValueError) as e:
            logger.debug(
                "Metric not available",
                metric=definition.name,
                uuid=device.uuid,
                error=str(e),
            )
            return Reading(device, definition, None, error=str(e))
        return Reading(device, definition, value)

    def collect(self) -> ScrapeResult:
        """Read all catalog metrics of all devices.

        Returns:
            The scrape result, possibly containing absences.

        Raises:
            DeviceEnumerationError: If devices cannot be enumerated.
        """
        start = time.time()
        handles = self._library.list_devices()

        result = ScrapeResult(catalog=self._catalog)
        seen_uuids: set[str] = set()
        for index, handle in enumerate(handles):
            try:
                device = self.resolve_identity(handle)
            except DeviceIdentityError as e:
                logger.warning(
                    "Skipping device with unresolvable identity",
                    index=index,
                    error=str(e),
                )
                continue

            if device.uuid in seen_uuids:
                logger.warning(
                    "Skipping device with duplicate UUID",
                    index=index,
                    uuid=device.uuid,
                )
                continue
            seen_uuids.add(device.uuid)

            result.devices.append(device)
            raw_values: dict[Attribute, RawValue | AttributeReadError] = {}
            result.readings.extend(
                self.read_metric(handle, device, definition, raw_values)
                for definition in self._catalog
            )

        absent = sum(1 for r in result.readings if r.absent)
        logger.debug(
            "Collected device snapshot",
            devices=len(result.devices),
            readings=len(result.readings) - absent,
            absent=absent,
            duration_seconds=round(time.time() - start, 3),
        )
        return result
