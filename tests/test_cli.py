"""Tests for the command line interface."""

from unittest.mock import patch

import pytest

from src.cli import build_parser, main

ENV = {"NEW_API": "https://backend.test", "NEW_API_KEY": "sk-secret-abcdef123456"}


@pytest.fixture
def backend_env(monkeypatch):
    for name, value in ENV.items():
        monkeypatch.setenv(name, value)
    for name in ("PROXY_PORT", "PROXY_HOST", "PROXY_LOG_LEVEL", "PROXY_AUTH_KEY"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def no_env(monkeypatch):
    for name in ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def no_dotenv():
    """Keep a developer's .env file out of the tests."""
    with patch("src.cli.load_dotenv"):
        yield


class TestParser:
    """Tests for argument parsing."""

    def test_serve_arguments(self):
        args = build_parser().parse_args(["serve", "--host", "127.0.0.1", "-p", "9001", "--log-level", "debug"])
        assert args.command == "serve"
        assert args.host == "127.0.0.1"
        assert args.port == 9001
        assert args.log_level == "debug"

    def test_env_file_is_global(self):
        args = build_parser().parse_args(["--env-file", "prod.env", "config", "check"])
        assert args.env_file == "prod.env"
        assert args.config_command == "check"

    def test_invalid_log_level(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["serve", "--log-level", "loud"])


class TestConfigCommands:
    """Tests for the config command group."""

    def test_show_masks_secret(self, backend_env, capsys):
        assert main(["config", "show"]) == 0
        out = capsys.readouterr().out
        assert "NEW_API: https://backend.test" in out
        assert "sk-secret-abcdef123456" not in out

    def test_check_ok(self, backend_env, capsys):
        assert main(["config", "check"]) == 0
        assert "Configuration OK" in capsys.readouterr().out

    def test_check_missing_backend(self, no_env, capsys):
        assert main(["config", "check"]) == 1
        assert "NEW_API environment variable is required" in capsys.readouterr().err

    def test_show_invalid(self, backend_env, monkeypatch, capsys):
        monkeypatch.setenv("PROXY_PORT", "not-a-port")
        assert main(["config", "show"]) == 1
        assert "PROXY_PORT" in capsys.readouterr().err

    def test_config_without_subcommand(self, capsys):
        assert main(["config"]) == 1
        assert "show" in capsys.readouterr().out

    def test_no_command(self, capsys):
        assert main([]) == 1


class TestServe:
    """Tests for the serve command."""

    @patch("src.cli.uvicorn.run")
    def test_serve_applies_overrides(self, mock_run, backend_env):
        assert main(["serve", "--host", "127.0.0.1", "--port", "9100", "--log-level", "warning"]) == 0

        mock_run.assert_called_once()
        kwargs = mock_run.call_args.kwargs
        assert kwargs["host"] == "127.0.0.1"
        assert kwargs["port"] == 9100
        assert kwargs["log_level"] == "warning"

        app = mock_run.call_args.args[0]
        assert app.state.config.port == 9100
        assert app.state.config.log_level == "WARNING"

    @patch("src.cli.uvicorn.run")
    def test_serve_rejects_bad_port(self, mock_run, backend_env, capsys):
        assert main(["serve", "--port", "70000"]) == 1
        mock_run.assert_not_called()
        assert "invalid server port" in capsys.readouterr().err

    @patch("src.cli.uvicorn.run")
    def test_serve_without_backend(self, mock_run, no_env):
        assert main(["serve"]) == 1
        mock_run.assert_not_called()

    @patch("src.cli.load_dotenv")
    def test_env_file_is_loaded(self, mock_load, backend_env):
        main(["--env-file", "custom.env", "config", "check"])
        mock_load.assert_called_once_with(dotenv_path="custom.env")
