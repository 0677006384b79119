"""
Tests for the command-line interface.
"""

from unittest.mock import patch

import pytest

from insight_agent import cli
from insight_agent.config import Settings


def run_show_config(check: bool, **overrides) -> bool:
    settings = Settings(_env_file=None, **overrides)
    with patch.object(cli, "get_settings", return_value=settings):
        return cli.show_config(check)


def test_show_config_without_check(capsys):
    """Test config output lists the server and agent settings."""
    assert run_show_config(False, port=7000) is True

    output = capsys.readouterr().out
    assert "Port: 7000" in output
    assert "Factory: (not set)" in output


def test_check_requires_agent_factory(capsys):
    """Test --check fails when no agent factory is set."""
    assert run_show_config(True) is False
    assert "AGENT_FACTORY is not set" in capsys.readouterr().out


def test_check_reports_unloadable_factory(capsys):
    """Test --check reports an import path that cannot be resolved."""
    assert run_show_config(True, agent_factory="no_such_module_here:factory") is False
    assert "could not be loaded" in capsys.readouterr().out


def test_check_rejects_non_callable_factory(capsys):
    """Test --check rejects a factory that is not callable."""
    assert run_show_config(True, agent_factory="insight_agent:__version__") is False
    assert "is not callable" in capsys.readouterr().out


def test_check_passes(capsys):
    """Test a loadable factory passes the check."""
    assert run_show_config(True, agent_factory="conftest:AgentFactoryStub") is True
    assert "Configuration looks good" in capsys.readouterr().out


def test_check_negative_keep_counts(capsys):
    """Test negative compaction settings are flagged."""
    assert run_show_config(True, agent_factory="conftest:AgentFactoryStub", compaction_keep_last=-1) is False
    assert "must not be negative" in capsys.readouterr().out


def test_main_without_command_prints_help(capsys):
    """Test running without a subcommand prints help and exits cleanly."""
    with pytest.raises(SystemExit) as exc_info:
        cli.main([])
    assert exc_info.value.code == 0
    assert "serve" in capsys.readouterr().out


def test_main_serve_runs_uvicorn():
    """Test serve hands the app factory to uvicorn."""
    with patch.object(cli, "configure_logging"), patch.object(cli.uvicorn, "run") as run:
        cli.main(["serve", "--host", "0.0.0.0", "--port", "7001"])

    args, kwargs = run.call_args
    assert args[0] == "insight_agent.server.app:create_app"
    assert kwargs["factory"] is True
    assert kwargs["host"] == "0.0.0.0"
    assert kwargs["port"] == 7001
