"""Prometheus text exposition for device snapshots.

Turns a scrape result into ``prometheus_client`` metric families and renders
them in the text exposition format (version 0.0.4). Rendering is a pure
function of the scrape result: families follow catalog order, samples follow
device enumeration order, and integer values are written without a float
round trip so large byte counts stay exact.
"""

from collections.abc import Iterable, Iterator

from prometheus_client.core import GaugeMetricFamily
from prometheus_client.metrics_core import Metric
from prometheus_client.utils import floatToGoString

from .catalog import LABEL_NAMES
from .collector import ScrapeResult

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def generate_metrics(result: ScrapeResult) -> Iterator[Metric]:
    """Generate Prometheus metric families from a scrape result.

    Creates one gauge family per metric definition that has at least one
    present reading, labelled with the device name, PCI bus id and UUID.

    Args:
        result: Readings of a single scrape.

    Yields:
        Prometheus Metric objects in catalog order.
    """
    for definition, readings in result.by_definition():
        if not readings:
            continue

        family = GaugeMetricFamily(
            definition.name,
            definition.help,
            labels=list(LABEL_NAMES),
        )
        for reading in readings:
            family.add_metric(reading.device.labels(), reading.value)
        yield family


def escape_help(text: str) -> str:
    """Escape backslashes and newlines in help text."""
    return text.replace("\\", r"\\").replace("\n", r"\n")


def escape_label_value(value: str) -> str:
    """Escape backslashes, double quotes and newlines in a label value."""
    return value.replace("\\", r"\\").replace("\n", r"\n").replace('"', r"\"")


def format_value(value: float) -> str:
    """Render a sample value.

    Integers are written as plain decimal numbers; anything else uses the
    Go-style float formatting of the Prometheus client.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return floatToGoString(value)


def _render_family(metric: Metric) -> Iterator[str]:
    yield f"# HELP {metric.name} {escape_help(metric.documentation)}\n"
    yield f"# TYPE {metric.name} {metric.type}\n"
    for sample in metric.samples:
        labels = ",".join(
            f'{key}="{escape_label_value(value)}"'
            for key, value in sample.labels.items()
        )
        label_block = f"{{{labels}}}" if labels else ""
        yield f"{sample.name}{label_block} {format_value(sample.value)}\n"


def render(metrics: Iterable[Metric]) -> bytes:
    """Render metric families in the text exposition format.

    Families without samples are skipped.
    """
    lines: list[str] = []
    for metric in metrics:
        if metric.samples:
            lines.extend(_render_family(metric))
    return "".join(lines).encode("utf-8")


def encode(result: ScrapeResult) -> bytes:
    """Encode a scrape result as a text exposition body.

    Returns an empty body when no device reported any metric.
    """
    return render(generate_metrics(result))
