"""Command-line entry point for the NVML Prometheus Exporter."""

import argparse

import uvicorn

from . import server

DEFAULT_LISTEN = "[::]:9144"


def parse_listen_address(value: str) -> tuple[str, int]:
    """Split an ``ADDRESS:PORT`` string into host and port.

    IPv6 addresses must be bracketed, e.g. ``[::]:9144``.

    Raises:
        ValueError: If the address or port is malformed.
    """
    host, sep, port_text = value.rpartition(":")
    if not sep or not host:
        msg = f"Expected ADDRESS:PORT, got {value!r}"
        raise ValueError(msg)

    if host.startswith("["):
        if not host.endswith("]"):
            msg = f"Unterminated IPv6 address in {value!r}"
            raise ValueError(msg)
        host = host[1:-1]
    elif ":" in host:
        msg = f"IPv6 address must be enclosed in brackets: {value!r}"
        raise ValueError(msg)

    port = int(port_text)
    if not 0 < port < 65536:  # noqa: PLR2004
        msg = f"Port out of range: {port}"
        raise ValueError(msg)
    return host, port


def _listen_arg(value: str) -> tuple[str, int]:
    try:
        return parse_listen_address(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nvml-prometheus-exporter",
        description="Prometheus exporter for NVIDIA GPU metrics via NVML",
    )
    parser.add_argument(
        "-l",
        "--listen",
        type=_listen_arg,
        default=None,
        help=f"Listen address/port (default: {DEFAULT_LISTEN})",
    )
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help=f"Path to JSON config (default: ${server.CONFIG_ENV_VAR})",
    )
    parser.add_argument("--log-level", default=None, help="Logging level")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Parse flags, build the app and serve it."""
    args = build_parser().parse_args(argv)

    config = server.resolve_config(args.config)
    overrides = {}
    if args.listen is not None:
        overrides["listen_address"], overrides["port"] = args.listen
    if args.log_level is not None:
        overrides["log_level"] = args.log_level
    if overrides:
        config = server.ExporterConfig(**{**config.model_dump(), **overrides})

    server.configure_logging(config.log_level)
    app = server.create_exporter(config)

    uvicorn.run(
        app,
        host=config.listen_address,
        port=config.port,
        access_log=False,
    )


if __name__ == "__main__":
    main()
