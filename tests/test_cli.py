"""Tests for the muxtunnel command line."""

import socket
from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

from muxtunnel import __version__
from muxtunnel.cli.commands import run as run_module
from muxtunnel.cli.main import app
from muxtunnel.crypto.handshake import generate_key
from muxtunnel.models.enums import LogLevel

runner = CliRunner()

# Unset every variable the agent reads so the host environment cannot leak in
CLEAN_ENV = {
    name: None
    for name in (
        "USBMUXD_HOST",
        "USBMUXD_PORT",
        "USBMUXD_SOCKET_ADDRESS",
        "HANDSHAKE_SECRET",
        "MUXTUNNEL_HANDSHAKE_MODE",
        "MUXTUNNEL_LOG_LEVEL",
        "MUXTUNNEL_LOG_FILE",
        "MUXTUNNEL_SOCKET_MODE",
        "MUXTUNNEL_TUNNELS",
        "MUXTUNNEL_CONNECT_TIMEOUT",
        "MUXTUNNEL_LOCAL_DIAL_TIMEOUT",
        "MUXTUNNEL_IDLE_TIMEOUT",
    )
}


def env(**values):
    return {**CLEAN_ENV, **values}


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert f"muxtunnel v{__version__}" in result.output


class TestHandshakeCommands:
    def test_keygen(self):
        result = runner.invoke(app, ["handshake", "keygen"])
        assert result.exit_code == 0
        assert len(result.output.strip()) == 44

    def test_encrypt_then_decrypt(self):
        key = generate_key()
        encrypted = runner.invoke(
            app, ["handshake", "encrypt", "usbmuxd", "--key", key], env=CLEAN_ENV
        )
        assert encrypted.exit_code == 0
        blob = encrypted.output.strip()

        decrypted = runner.invoke(
            app, ["handshake", "decrypt", blob], env=env(HANDSHAKE_SECRET=key)
        )
        assert decrypted.exit_code == 0
        assert decrypted.output.strip() == "usbmuxd"

    def test_decrypt_with_wrong_key(self):
        blob = runner.invoke(
            app, ["handshake", "encrypt", "forward", "-k", generate_key()]
        ).output.strip()

        result = runner.invoke(
            app, ["handshake", "decrypt", blob, "-k", generate_key()]
        )
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_missing_key(self):
        result = runner.invoke(app, ["handshake", "encrypt", "usbmuxd"], env=CLEAN_ENV)
        assert result.exit_code == 1
        assert "No key given" in result.output

    def test_short_key(self):
        result = runner.invoke(
            app, ["handshake", "encrypt", "usbmuxd", "-k", "c2hvcnQ="], env=CLEAN_ENV
        )
        assert result.exit_code == 1
        assert "32 bytes" in result.output


class TestConfigCommands:
    def test_check_missing_relay(self):
        result = runner.invoke(app, ["config", "check"], env=CLEAN_ENV)
        assert result.exit_code == 1
        assert "USBMUXD_HOST" in result.output

    def test_check_ok(self):
        result = runner.invoke(
            app,
            ["config", "check"],
            env=env(USBMUXD_HOST="127.0.0.1", USBMUXD_PORT="4000"),
        )
        assert result.exit_code == 0
        assert "relay 127.0.0.1:4000, 2 tunnel(s)" in result.output

    def test_check_warns_about_unused_secret(self):
        result = runner.invoke(
            app,
            ["config", "check"],
            env=env(
                USBMUXD_HOST="127.0.0.1",
                USBMUXD_PORT="4000",
                HANDSHAKE_SECRET=generate_key(),
            ),
        )
        assert result.exit_code == 0
        assert "Warning" in result.output

    def test_show_masks_secret(self):
        secret = generate_key()
        result = runner.invoke(
            app,
            ["config", "show"],
            env=env(
                USBMUXD_HOST="127.0.0.1",
                USBMUXD_PORT="4000",
                HANDSHAKE_SECRET=secret,
            ),
        )
        assert result.exit_code == 0
        assert "Current Configuration" in result.output
        assert "********" in result.output
        assert secret not in result.output

    def test_show_rejects_malformed_env(self):
        result = runner.invoke(
            app, ["config", "show"], env=env(USBMUXD_PORT="not-a-port")
        )
        assert result.exit_code == 1
        assert "USBMUXD_PORT" in result.output


class TestRunCommand:
    @pytest.fixture(autouse=True)
    def no_logging_setup(self, monkeypatch):
        # Keep loguru sinks pointed at the real stderr between tests
        mock = MagicMock()
        monkeypatch.setattr(run_module, "configure_logging", mock)
        return mock

    def test_missing_relay(self):
        result = runner.invoke(app, ["run"], env=CLEAN_ENV)
        assert result.exit_code == 1
        assert "USBMUXD_HOST and USBMUXD_PORT must be set" in result.output

    def test_bad_tunnel_option(self):
        result = runner.invoke(
            app,
            ["run", "--relay-host", "127.0.0.1", "--relay-port", "4000", "-t", "nohandshake"],
            env=CLEAN_ENV,
        )
        assert result.exit_code == 1
        assert "expected address=handshake" in result.output

    def test_bind_failure_exits(self, no_logging_setup):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as taken:
            taken.bind(("127.0.0.1", 0))
            taken.listen()
            port = taken.getsockname()[1]

            result = runner.invoke(
                app,
                [
                    "run",
                    "--relay-host",
                    "127.0.0.1",
                    "--relay-port",
                    "4000",
                    "--tunnel",
                    f"127.0.0.1:{port}=forward",
                    "--log-level",
                    "debug",
                ],
                env=CLEAN_ENV,
            )

        assert result.exit_code == 1
        assert "Cannot bind" in result.output
        no_logging_setup.assert_called_once_with(LogLevel.DEBUG, None)
