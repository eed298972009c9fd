"""Error taxonomy for device queries.

Only ``DeviceEnumerationError`` is fatal for a scrape. The other two are
absorbed by the snapshot reader.
"""

from ..catalog import Attribute


class ExporterError(Exception):
    """Base class for device query errors."""


class DeviceEnumerationError(ExporterError):
    """Raised when the device subsystem cannot be reached at all."""


class DeviceIdentityError(ExporterError):
    """Raised when the identity of a single device cannot be resolved."""


class AttributeReadError(ExporterError):
    """Raised when a single attribute of a single device cannot be read."""

    def __init__(self, attribute: Attribute, reason: str):
        super().__init__(f"Failed to read {attribute.value}: {reason}")
        self.attribute = attribute
        self.reason = reason
