"""NVML device library adapter.

Wraps the ``pynvml`` bindings behind a narrow interface (enumerate devices,
read one attribute of one device) so the collection logic can be exercised
against a fake implementation without real hardware.
"""

import threading
from collections.abc import Callable
from decimal import Decimal
from typing import Any, NamedTuple, Protocol, TypeAlias

import pynvml
import structlog

from ..catalog import Attribute
from .errors import AttributeReadError, DeviceEnumerationError

logger = structlog.get_logger(__name__)

DeviceHandle: TypeAlias = Any


class MemoryInfo(NamedTuple):
    """Frame buffer memory of a device in bytes, taken from one query."""

    free: int
    total: int
    used: int


RawValue: TypeAlias = int | float | Decimal | str | MemoryInfo

# NVML reports power in milliwatts and energy in millijoules.
_MILLI = Decimal(1000)


class DeviceLibrary(Protocol):
    """Capability to enumerate devices and read their attributes."""

    def list_devices(self) -> list[DeviceHandle]:
        """Return handles for all present devices.

        Raises:
            DeviceEnumerationError: If the device subsystem is unreachable.
        """
        ...

    def read(self, handle: DeviceHandle, attribute: Attribute) -> RawValue:
        """Read one attribute of one device, in base units.

        Raises:
            AttributeReadError: If the attribute cannot be read.
        """
        ...


def _decode(value: bytes | str) -> str:
    """Decode byte strings returned by older pynvml releases."""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def _memory_info(handle: DeviceHandle) -> MemoryInfo:
    info = pynvml.nvmlDeviceGetMemoryInfo(handle)
    return MemoryInfo(free=int(info.free), total=int(info.total), used=int(info.used))


def _performance_state(handle: DeviceHandle) -> int:
    state = pynvml.nvmlDeviceGetPerformanceState(handle)
    if state == pynvml.NVML_PSTATE_UNKNOWN:
        msg = "Performance state is unknown"
        raise ValueError(msg)
    return int(state)


_READERS: dict[Attribute, Callable[[DeviceHandle], RawValue]] = {
    Attribute.NAME: lambda h: _decode(pynvml.nvmlDeviceGetName(h)),
    Attribute.PCI_BUS_ID: lambda h: _decode(pynvml.nvmlDeviceGetPciInfo(h).busId),
    Attribute.UUID: lambda h: _decode(pynvml.nvmlDeviceGetUUID(h)),
    Attribute.FAN_SPEED: lambda h: int(pynvml.nvmlDeviceGetFanSpeed(h)),
    Attribute.MEMORY_INFO: _memory_info,
    Attribute.PCI_REPLAY: lambda h: int(pynvml.nvmlDeviceGetPcieReplayCounter(h)),
    Attribute.PERFORMANCE_STATE: _performance_state,
    Attribute.POWER_USAGE: lambda h: (
        Decimal(pynvml.nvmlDeviceGetPowerUsage(h)) / _MILLI
    ),
    Attribute.POWER_LIMIT: lambda h: (
        Decimal(pynvml.nvmlDeviceGetEnforcedPowerLimit(h)) / _MILLI
    ),
    Attribute.TOTAL_ENERGY: lambda h: (
        Decimal(pynvml.nvmlDeviceGetTotalEnergyConsumption(h)) / _MILLI
    ),
}


class NvmlDeviceLibrary:
    """Device library backed by NVML.

    NVML is initialized once per process and shut down on close. Every call
    into the library is serialized through a single lock, which makes the
    adapter safe to share between concurrent scrapes.

    Can be used as a context manager for automatic cleanup.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._initialized = False
        self._closed = False

    def __enter__(self):
        """Enter context manager."""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit context manager and shut NVML down."""
        self.close()

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _init_locked(self) -> None:
        try:
            pynvml.nvmlInit()
        except pynvml.NVMLError as e:
            msg = f"Failed to initialize NVML: {e}"
            raise DeviceEnumerationError(msg) from e
        self._initialized = True
        logger.info("NVML initialized")

    def open(self) -> None:
        """Initialize NVML.

        A failure is logged rather than raised so the exporter can start on a
        host where the driver is not loaded yet; enumeration retries the
        initialization on every scrape until it succeeds.
        """
        with self._lock:
            self._closed = False
            if self._initialized:
                return
            try:
                self._init_locked()
            except DeviceEnumerationError:
                logger.exception("NVML initialization failed at startup")

    def close(self) -> None:
        """Shut NVML down if it was initialized.

        Enumeration fails from here on until the library is opened again, so
        a scrape still in flight cannot bring NVML back up.
        """
        with self._lock:
            self._closed = True
            if not self._initialized:
                return
            self._initialized = False
            try:
                pynvml.nvmlShutdown()
            except pynvml.NVMLError as e:
                logger.warning("NVML shutdown failed", error=str(e))
            else:
                logger.info("NVML shut down")

    def list_devices(self) -> list[DeviceHandle]:
        """Return handles for all devices NVML reports.

        A device whose handle cannot be obtained is skipped.

        Raises:
            DeviceEnumerationError: If the library is closed, NVML cannot be
                initialized or the device count cannot be queried.
        """
        with self._lock:
            if self._closed:
                msg = "NVML library is closed"
                raise DeviceEnumerationError(msg)
            if not self._initialized:
                self._init_locked()
            try:
                count = pynvml.nvmlDeviceGetCount()
            except pynvml.NVMLError as e:
                msg = f"Failed to query device count: {e}"
                raise DeviceEnumerationError(msg) from e

            handles = []
            for index in range(count):
                try:
                    handles.append(pynvml.nvmlDeviceGetHandleByIndex(index))
                except pynvml.NVMLError as e:
                    logger.warning(
                        "Failed to get device handle",
                        index=index,
                        error=str(e),
                    )
            return handles

    def read(self, handle: DeviceHandle, attribute: Attribute) -> RawValue:
        """Read a single attribute of a device.

        Power is returned in watts and energy in joules, both as exact
        decimals. Memory comes back as a single MemoryInfo in bytes, so free,
        total and used always describe the same device state.

        Raises:
            AttributeReadError: If NVML reports an error for this query.
        """
        reader = _READERS[attribute]
        with self._lock:
            try:
                return reader(handle)
            except (pynvml.NVMLError, ValueError) as e:
                raise AttributeReadError(attribute, str(e)) from e
