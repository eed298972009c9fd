"""HTTP server for the NVML Prometheus Exporter."""

import contextlib
import json
import logging
import os
import pathlib
from collections.abc import AsyncIterator

import pydantic
import starlette.applications
import starlette.requests
import starlette.responses
import starlette.routing
import structlog

from . import exposition, nvml
from .collector import SnapshotReader

CONFIG_ENV_VAR = "NVML_EXPORTER_CONFIG_PATH"
logger = structlog.get_logger(__name__)


class ExporterConfig(pydantic.BaseModel):
    """Configuration for the NVML Prometheus Exporter."""

    listen_address: str = pydantic.Field(
        "::",
        description="Address the HTTP server binds to",
    )
    port: int = pydantic.Field(9144, description="HTTP server port", gt=0, lt=65536)
    metrics_path: str = pydantic.Field(
        "/metrics",
        description="URL path for metrics endpoint",
    )
    log_level: str = pydantic.Field("INFO", description="Logging level")

    @pydantic.field_validator("metrics_path")
    @classmethod
    def _metrics_path_is_absolute(cls, value: str) -> str:
        if not value.startswith("/"):
            msg = "metrics_path must start with '/'"
            raise ValueError(msg)
        return value


def configure_logging(log_level_name: str) -> None:
    """Configure structlog for logfmt output."""
    log_level = getattr(logging, log_level_name.upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.EventRenamer("msg"),
            structlog.processors.format_exc_info,
            structlog.processors.LogfmtRenderer(
                key_order=("timestamp", "level", "msg"),
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def load_config(config_path: str) -> ExporterConfig:
    """Load configuration from JSON file."""
    path = pathlib.Path(config_path)
    if not path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with path.open("r") as f:
        data = json.load(f)

    return ExporterConfig(**data)


def create_starlette_app(
    metrics_path: str,
    reader: SnapshotReader,
    library: nvml.NvmlDeviceLibrary | None = None,
) -> starlette.applications.Starlette:
    """Create a Starlette application for serving device metrics.

    Every request reads a fresh device snapshot; nothing is cached between
    requests.

    Args:
        metrics_path: URL path for metrics endpoint (e.g., "/metrics").
        reader: Snapshot reader invoked once per scrape.
        library: NVML library whose lifecycle is bound to the application
            lifespan, if any.

    Returns:
        Configured Starlette application.
    """

    def metrics_endpoint(
        request: starlette.requests.Request,
    ) -> starlette.responses.Response:
        """Read a device snapshot and serve it in exposition format.

        Responds with 500 and an empty body when devices cannot be
        enumerated, so the scraper marks the target as down instead of
        seeing zero GPUs.
        """
        logger.info(
            "HTTP request",
            client_ip=request.client.host if request.client else "unknown",
            method=request.method,
            path=request.url.path,
        )
        try:
            result = reader.collect()
        except nvml.DeviceEnumerationError:
            logger.exception("Failed to enumerate devices")
            return starlette.responses.Response(status_code=500)

        return starlette.responses.Response(
            content=exposition.encode(result),
            media_type=exposition.CONTENT_TYPE,
        )

    @contextlib.asynccontextmanager
    async def lifespan(
        app: starlette.applications.Starlette,
    ) -> AsyncIterator[None]:
        if library is None:
            yield
            return
        library.open()
        try:
            yield
        finally:
            library.close()

    routes = [
        starlette.routing.Route(metrics_path, metrics_endpoint, methods=["GET"]),
    ]

    return starlette.applications.Starlette(routes=routes, lifespan=lifespan)


def create_exporter(
    config: ExporterConfig,
    library: nvml.NvmlDeviceLibrary | None = None,
) -> starlette.applications.Starlette:
    """Construct the exporter ASGI app from validated config."""
    if library is None:
        library = nvml.NvmlDeviceLibrary()
    reader = SnapshotReader(library)
    logger.info("Created snapshot reader", metrics_path=config.metrics_path)

    return create_starlette_app(
        metrics_path=config.metrics_path,
        reader=reader,
        library=library,
    )


def resolve_config(config_path: str | None = None) -> ExporterConfig:
    """Load config from a path, the environment, or fall back to defaults."""
    resolved_path = config_path or os.environ.get(CONFIG_ENV_VAR)
    if resolved_path is None:
        return ExporterConfig()
    return load_config(resolved_path)


def create_app(config_path: str | None = None) -> starlette.applications.Starlette:
    """Create the exporter ASGI app using a config path or environment default."""
    config = resolve_config(config_path)
    configure_logging(config.log_level)
    return create_exporter(config)
