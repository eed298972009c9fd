"""Tests for the HTTP layer, configuration loading and the command line."""

import json
from unittest.mock import MagicMock, patch

import pydantic
import pytest
from starlette.testclient import TestClient

from nvml_prometheus_exporter import __main__ as cli
from nvml_prometheus_exporter import collector, exposition, nvml, server
from nvml_prometheus_exporter.catalog import Attribute


@pytest.fixture
def client_for(make_library):
    """Build a TestClient serving the given device values."""

    def build(*devices, metrics_path: str = "/metrics") -> TestClient:
        library = make_library(*devices)
        app = server.create_starlette_app(
            metrics_path=metrics_path,
            reader=collector.SnapshotReader(library),
        )
        return TestClient(app)

    return build


# ---------------------------------------------------------------------------
# Metrics endpoint
# ---------------------------------------------------------------------------


def test_metrics_success(client_for, rtx_2080):
    """A healthy scrape returns 200 with exposition text."""
    response = client_for(rtx_2080).get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"] == exposition.CONTENT_TYPE
    assert "nvml_fan_speed{" in response.text
    assert response.text.endswith("\n")


def test_metrics_enumeration_failure_is_server_error(make_library):
    """Enumeration failure yields 500 and no body, never an empty 200."""
    library = make_library()
    library.list_devices.side_effect = nvml.DeviceEnumerationError("no driver")
    app = server.create_starlette_app("/metrics", collector.SnapshotReader(library))

    response = TestClient(app).get("/metrics")

    assert response.status_code == 500
    assert response.content == b""


def test_metrics_zero_devices_is_empty_success(client_for):
    """No GPUs present is a successful scrape with an empty body."""
    response = client_for().get("/metrics")

    assert response.status_code == 200
    assert response.content == b""


def test_metrics_reads_live_state_per_request(client_for, rtx_2080):
    """Nothing is cached between scrapes."""
    client = client_for(rtx_2080)

    first = client.get("/metrics").text
    rtx_2080[Attribute.FAN_SPEED] = 90
    second = client.get("/metrics").text

    assert "} 65\n" in first
    assert "} 90\n" in second


def test_metrics_custom_path(client_for, rtx_2080):
    client = client_for(rtx_2080, metrics_path="/gpu")

    assert client.get("/gpu").status_code == 200
    assert client.get("/metrics").status_code == 404


def test_metrics_post_not_allowed(client_for):
    assert client_for().post("/metrics").status_code == 405


def test_lifespan_opens_and_closes_library(make_library):
    """The NVML library lifecycle is bound to the application lifespan."""
    library = make_library()
    app = server.create_starlette_app(
        "/metrics",
        collector.SnapshotReader(library),
        library=library,
    )

    with TestClient(app) as client:
        library.open.assert_called_once()
        library.close.assert_not_called()
        client.get("/metrics")

    library.close.assert_called_once()


def test_create_exporter_wires_library(make_library, rtx_2080):
    library = make_library(rtx_2080)
    app = server.create_exporter(server.ExporterConfig(), library=library)

    with TestClient(app) as client:
        response = client.get("/metrics")

    assert response.status_code == 200
    assert "nvml_power_used_total_mj{" in response.text
    library.open.assert_called_once()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_config_defaults():
    config = server.ExporterConfig()

    assert config.listen_address == "::"
    assert config.port == 9144
    assert config.metrics_path == "/metrics"
    assert config.log_level == "INFO"


@pytest.mark.parametrize("port", [0, 65536])
def test_config_rejects_invalid_port(port):
    with pytest.raises(pydantic.ValidationError):
        server.ExporterConfig(port=port)


def test_config_rejects_relative_metrics_path():
    with pytest.raises(pydantic.ValidationError):
        server.ExporterConfig(metrics_path="metrics")


def test_load_config(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"port": 9200, "log_level": "DEBUG"}))

    config = server.load_config(str(path))

    assert config.port == 9200
    assert config.log_level == "DEBUG"
    assert config.metrics_path == "/metrics"


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        server.load_config(str(tmp_path / "missing.json"))


def test_resolve_config_from_environment(tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"port": 9300}))
    monkeypatch.setenv(server.CONFIG_ENV_VAR, str(path))

    assert server.resolve_config().port == 9300


def test_resolve_config_defaults_without_path(monkeypatch):
    monkeypatch.delenv(server.CONFIG_ENV_VAR, raising=False)
    assert server.resolve_config() == server.ExporterConfig()


# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("[::]:9144", ("::", 9144)),
        ("0.0.0.0:9100", ("0.0.0.0", 9100)),
        ("localhost:8080", ("localhost", 8080)),
        ("[fe80::1]:1", ("fe80::1", 1)),
    ],
)
def test_parse_listen_address(value, expected):
    assert cli.parse_listen_address(value) == expected


@pytest.mark.parametrize(
    "value",
    ["9144", ":9144", "::1:9144", "[::1:9144", "localhost:http", "localhost:70000"],
)
def test_parse_listen_address_rejects_malformed(value):
    with pytest.raises(ValueError):
        cli.parse_listen_address(value)


def test_main_runs_uvicorn_with_listen_override(monkeypatch):
    monkeypatch.delenv(server.CONFIG_ENV_VAR, raising=False)
    library = MagicMock(spec=nvml.NvmlDeviceLibrary)

    with (
        patch.object(cli.uvicorn, "run") as run,
        patch.object(cli.server, "configure_logging") as configure_logging,
        patch.object(cli.server.nvml, "NvmlDeviceLibrary", return_value=library),
    ):
        cli.main(["--listen", "127.0.0.1:9555", "--log-level", "WARNING"])

    configure_logging.assert_called_once_with("WARNING")
    run.assert_called_once()
    _, kwargs = run.call_args
    assert kwargs["host"] == "127.0.0.1"
    assert kwargs["port"] == 9555


def test_main_rejects_bad_listen_address():
    with pytest.raises(SystemExit):
        cli.main(["--listen", "nonsense"])
