"""Unit tests for the main entry point.

Tests the main() function including:
- CLI argument parsing
- Configuration loading with priority (CLI > env > config)
- One-shot job runs and the final check-in command
- Daemon mode
- Exit code handling
- Error handling
"""

import logging
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from placement_guard.config.environment import EnvironmentConfig
from placement_guard.config.exceptions import ConfigurationError
from placement_guard.config.models import AppConfig
from placement_guard.errors import NotFoundError
from placement_guard.jobs.models import BatchRunResult, JobRunResult
from placement_guard.main import build_parser, load_runtime_config, main
from placement_guard.utils.timestamps import utc_now
from tests.helpers import delivered, undelivered


def make_env(log_level=None):
    return EnvironmentConfig(
        smtp_host="smtp.example.com",
        smtp_port=587,
        admin_email="admin@example.com",
        openai_api_key="sk-test",
        log_level=log_level,
    )


def job_result(job, had_errors=False):
    now = utc_now()
    return JobRunResult(job=job, run_id="abc", run_started_at=now, run_finished_at=now, had_errors=had_errors)


class TestBuildParser:
    def test_defaults_to_daemon_mode(self):
        args = build_parser().parse_args([])

        assert args.run is None
        assert args.final_check_in is None
        assert args.actor == "cli"

    def test_run_accepts_job_names(self):
        assert build_parser().parse_args(["--run", "payment-reminders"]).run == "payment-reminders"
        assert build_parser().parse_args(["--run", "all"]).run == "all"

    def test_run_rejects_unknown_job(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--run", "reindex"])

    def test_run_and_final_check_in_are_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--run", "all", "--final-check-in", "intro-1"])


class TestLoadRuntimeConfig:
    """Test suite for load_runtime_config helper."""

    @patch("placement_guard.main.load_config")
    def test_cli_log_level_wins(self, mock_load):
        mock_load.return_value = (AppConfig(), make_env(log_level="WARNING"))

        _, env_config = load_runtime_config(None, "DEBUG")

        assert env_config.log_level == "DEBUG"

    @patch("placement_guard.main.load_config")
    def test_environment_log_level_beats_config_file(self, mock_load):
        app_config = AppConfig.model_validate({"logging": {"level": "ERROR"}})
        mock_load.return_value = (app_config, make_env(log_level="WARNING"))

        _, env_config = load_runtime_config(None, None)

        assert env_config.log_level == "WARNING"

    @patch("placement_guard.main.load_config")
    def test_config_file_log_level_used_last(self, mock_load):
        app_config = AppConfig.model_validate({"logging": {"level": "ERROR"}})
        mock_load.return_value = (app_config, make_env())

        _, env_config = load_runtime_config(None, None)

        assert env_config.log_level == "ERROR"

    def test_invalid_config_file_raises(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
        monkeypatch.setenv("SMTP_PORT", "587")
        monkeypatch.setenv("ADMIN_EMAIL", "admin@example.com")
        config_file = tmp_path / "config.yaml"
        config_file.write_text('scheduler:\n  interval: "5m"\n')

        with pytest.raises(ConfigurationError, match="Configuration validation failed"):
            load_runtime_config(config_file, None)


@pytest.fixture
def wired():
    """Patch everything main() touches outside the CLI itself."""
    with patch("placement_guard.main.load_dotenv"), patch(
        "placement_guard.main.load_runtime_config"
    ) as load, patch("placement_guard.main.configure_logging") as configure, patch(
        "placement_guard.main.init_database"
    ) as init_db, patch("placement_guard.main.close_database") as close_db, patch(
        "placement_guard.main.build_services"
    ) as build:
        load.return_value = (AppConfig(), make_env(log_level="INFO"))
        services = Mock()
        build.return_value = services
        yield {
            "load": load,
            "configure": configure,
            "init_db": init_db,
            "close_db": close_db,
            "services": services,
        }


class TestMain:
    """Test suite for main() function."""

    def test_run_success(self, wired):
        wired["services"].jobs.run.return_value = BatchRunResult(results=[job_result("expiry")])

        exit_code = main(["--run", "expiry", "--config", "config.yaml"])

        assert exit_code == 0
        wired["load"].assert_called_once_with(Path("config.yaml"), None)
        wired["configure"].assert_called_once()
        wired["init_db"].assert_called_once_with("sqlite:///./data/placement_guard.db")
        wired["close_db"].assert_called_once()
        wired["services"].jobs.run.assert_called_once_with("expiry")

    def test_run_with_errors_exits_nonzero(self, wired):
        wired["services"].jobs.run.return_value = BatchRunResult(
            results=[job_result("check-ins"), job_result("expiry", had_errors=True)]
        )

        assert main(["--run", "all"]) == 1

    def test_final_check_in_sent(self, wired, capsys):
        wired["services"].expiry.send_final_check_in.return_value = Mock(delivery=delivered())

        exit_code = main(["--final-check-in", "intro-1", "--actor", "ops@example.com"])

        assert exit_code == 0
        wired["services"].expiry.send_final_check_in.assert_called_once_with("intro-1", actor="ops@example.com")
        assert "intro-1" in capsys.readouterr().out

    def test_final_check_in_not_delivered(self, wired, capsys):
        wired["services"].expiry.send_final_check_in.return_value = Mock(
            delivery=undelivered("Connection refused")
        )

        assert main(["--final-check-in", "intro-1"]) == 1
        assert "Connection refused" in capsys.readouterr().err

    def test_engine_error_reports_code(self, wired, capsys):
        wired["services"].expiry.send_final_check_in.side_effect = NotFoundError("Introduction intro-1 not found")

        assert main(["--final-check-in", "intro-1"]) == 1
        assert "NOT_FOUND" in capsys.readouterr().err

    @patch("signal.signal")
    @patch("placement_guard.main.SchedulerService")
    def test_daemon_mode(self, mock_scheduler_service, mock_signal, wired):
        scheduler = Mock()
        mock_scheduler_service.return_value = scheduler
        scheduler.start.side_effect = KeyboardInterrupt()

        exit_code = main([])

        scheduler.start.assert_called_once()
        kwargs = mock_scheduler_service.call_args.kwargs
        assert kwargs["job_names"] == ["check-ins", "expiry", "payment-reminders"]
        assert kwargs["interval_seconds"] == 86400
        assert kwargs["job_callable"] == wired["services"].jobs.run_job
        assert exit_code == 0

    def test_daemon_without_enabled_jobs(self, wired):
        app_config = AppConfig.model_validate(
            {"scheduler": {"check_ins": False, "expiry": False, "payment_reminders": False}}
        )
        wired["load"].return_value = (app_config, make_env(log_level="INFO"))

        assert main([]) == 1

    def test_configuration_error(self, wired, capsys):
        wired["load"].side_effect = ConfigurationError(
            "Config file not found", suggestions=["Create config.yaml"]
        )

        assert main(["--config", "nonexistent.yaml"]) == 1
        assert "Configuration Error" in capsys.readouterr().err

    def test_keyboard_interrupt(self, wired):
        wired["load"].side_effect = KeyboardInterrupt()

        assert main([]) == 0

    def test_log_level_override_passed_through(self, wired):
        wired["services"].jobs.run.return_value = BatchRunResult(results=[job_result("expiry")])

        main(["--run", "expiry", "--log-level", "DEBUG"])

        assert wired["load"].call_args.args[1] == "DEBUG"

    def test_unconfigured_classifier_left_to_client_builder(self, wired, caplog):
        env = make_env(log_level="INFO")
        env.openai_api_key = None
        wired["load"].return_value = (AppConfig(), env)
        wired["services"].jobs.run.return_value = BatchRunResult(results=[job_result("expiry")])

        with caplog.at_level(logging.WARNING, logger="placement_guard.main"):
            main(["--run", "expiry"])

        assert not [r for r in caplog.records if getattr(r, "event", None) == "classification.unconfigured"]
