"""Shared fixtures: a mocked device library backed by plain dictionaries."""

from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import pytest

from nvml_prometheus_exporter import nvml
from nvml_prometheus_exporter.catalog import Attribute

DeviceValues = dict[Attribute, Any]
LibraryFactory = Callable[..., MagicMock]


@pytest.fixture
def rtx_2080() -> DeviceValues:
    """Attribute values of a single GeForce RTX 2080, in library base units."""
    return {
        Attribute.NAME: "GeForce RTX 2080",
        Attribute.PCI_BUS_ID: "00000000:0A:00.0",
        Attribute.UUID: "GPU-4be17369-5fd4-6000-889b-9da3c63e45f3",
        Attribute.FAN_SPEED: 65,
        Attribute.MEMORY_INFO: nvml.MemoryInfo(
            free=4000000000,
            total=8000000000,
            used=4000000000,
        ),
        Attribute.PCI_REPLAY: 3,
        Attribute.PERFORMANCE_STATE: 0,
        Attribute.POWER_USAGE: 0.215,
        Attribute.POWER_LIMIT: 0.250,
        Attribute.TOTAL_ENERGY: 123.4,
    }


@pytest.fixture
def tesla() -> DeviceValues:
    """Attribute values of a second, different device."""
    return {
        Attribute.NAME: "Tesla V100-SXM2-16GB",
        Attribute.PCI_BUS_ID: "00000000:3B:00.0",
        Attribute.UUID: "GPU-0a1b2c3d-0000-1111-2222-333344445555",
        Attribute.FAN_SPEED: 30,
        Attribute.MEMORY_INFO: nvml.MemoryInfo(
            free=16000000000,
            total=17000000000,
            used=1000000000,
        ),
        Attribute.PCI_REPLAY: 0,
        Attribute.PERFORMANCE_STATE: 8,
        Attribute.POWER_USAGE: 41.5,
        Attribute.POWER_LIMIT: 300,
        Attribute.TOTAL_ENERGY: 98765.432,
    }


@pytest.fixture
def make_library() -> LibraryFactory:
    """Build a mocked device library from per-device attribute values.

    A missing attribute or an exception stored as value makes ``read`` raise
    AttributeReadError for that pair. Handles are the device indices.
    """

    def factory(*devices: DeviceValues) -> MagicMock:
        library = MagicMock(spec=nvml.NvmlDeviceLibrary)
        library.list_devices.return_value = list(range(len(devices)))

        def read(handle: int, attribute: Attribute) -> Any:
            value = devices[handle].get(attribute)
            if value is None or isinstance(value, Exception):
                raise nvml.AttributeReadError(attribute, "Not Supported")
            return value

        library.read.side_effect = read
        return library

    return factory
