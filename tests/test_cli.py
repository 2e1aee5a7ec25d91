"""
Tests for the command-line interface.
"""

from typer.testing import CliRunner

from netserver import __version__
from netserver.cmd.cli import app
from netserver.cmd.display import settings_table
from netserver.core.config import ServerConfig

runner = CliRunner()


def test_version_is_shown():
    result = runner.invoke(app, ["serve", "--help"])
    assert result.exit_code == 0
    assert "--allow" in result.output

    result = runner.invoke(app, [])
    assert __version__ in result.output


def test_unimplemented_mode_fails():
    result = runner.invoke(app, ["serve", "--port", "9000", "--mode", "threaded"])

    assert result.exit_code == 1
    assert "not implemented" in result.output


def test_invalid_port_is_rejected():
    result = runner.invoke(app, ["serve", "--port", "70000"])

    assert result.exit_code == 1
    assert "port" in result.output


def test_serve_refuses_client_mode():
    result = runner.invoke(app, ["serve", "--port", "9000", "--mode", "client"])

    assert result.exit_code == 1
    assert "netserver connect" in result.output


def test_unknown_handler():
    result = runner.invoke(app, ["serve", "--port", "9000", "--handler", "no_such_module_xyz:handle"])

    assert result.exit_code == 1
    assert "Cannot load handler" in result.output


def test_connect_needs_a_port():
    result = runner.invoke(app, ["connect", "--host", "127.0.0.1"])

    assert result.exit_code == 1
    assert "No port configured" in result.output


def test_config_file_errors(tmp_path):
    path = tmp_path / "server.toml"
    path.write_text("[server]\nport = 'http'\n")

    result = runner.invoke(app, ["serve", "--config", str(path)])

    assert result.exit_code == 1
    assert "Cannot load" in result.output


def test_config_file_mode_is_used(tmp_path):
    path = tmp_path / "server.toml"
    path.write_text("[server]\nport = 9000\nmode = 'inetd'\n")

    result = runner.invoke(app, ["serve", "--config", str(path)])

    assert result.exit_code == 1
    assert "not implemented" in result.output


def test_settings_table_rows():
    server = settings_table(ServerConfig(port=9000, allowed=["a"], mode="select"))
    client = settings_table(ServerConfig(port=9000, mode="client"))

    assert server.row_count == 8
    assert client.row_count == 5
