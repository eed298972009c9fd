"""NVML device library package.

Provides the narrow device query interface the snapshot reader depends on,
its NVML-backed implementation and the error taxonomy for device queries.

Exports:
    DeviceLibrary: Protocol for enumerating devices and reading attributes.
    NvmlDeviceLibrary: Implementation backed by the pynvml bindings.
    DeviceEnumerationError: The device subsystem is unreachable.
    DeviceIdentityError: A device's identity cannot be resolved.
    AttributeReadError: A single attribute read failed.
    MemoryInfo: Free, total and used memory from a single query.
"""

from .errors import (
    AttributeReadError,
    DeviceEnumerationError,
    DeviceIdentityError,
    ExporterError,
)
from .library import (
    DeviceHandle,
    DeviceLibrary,
    MemoryInfo,
    NvmlDeviceLibrary,
    RawValue,
)

__all__ = [
    "AttributeReadError",
    "DeviceEnumerationError",
    "DeviceHandle",
    "DeviceIdentityError",
    "DeviceLibrary",
    "ExporterError",
    "MemoryInfo",
    "NvmlDeviceLibrary",
    "RawValue",
]
