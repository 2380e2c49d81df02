"""Main entry point for the Placement Guard service."""

import argparse
import signal
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

from placement_guard.check_ins import CheckInResponseService, CheckInScheduler
from placement_guard.circumvention import CircumventionService
from placement_guard.classification import ResponseClassifier, build_classification_client
from placement_guard.config.environment import EnvironmentConfig
from placement_guard.config.exceptions import ConfigurationError
from placement_guard.config.loader import load_config
from placement_guard.config.models import AppConfig
from placement_guard.errors import PlacementGuardError
from placement_guard.expiry import ExpiryWorkflow
from placement_guard.introductions import IntroductionService
from placement_guard.jobs import ALL, JOB_NAMES, BatchJobRunner
from placement_guard.logging import get_logger
from placement_guard.logging.config import configure_logging
from placement_guard.notifications import NotificationGateway
from placement_guard.payments import PaymentLedger
from placement_guard.persistence.database import close_database, init_database
from placement_guard.scheduler import SchedulerService
from placement_guard.security.tokens import TokenIssuer

logger = get_logger(__name__, component="cli")


@dataclass
class Services:
    """Every engine service, wired to one gateway, token issuer and classifier."""

    gateway: NotificationGateway
    introductions: IntroductionService
    check_ins: CheckInScheduler
    check_in_responses: CheckInResponseService
    circumvention: CircumventionService
    expiry: ExpiryWorkflow
    payments: PaymentLedger
    jobs: BatchJobRunner


def build_services(
    app_config: AppConfig,
    env_config: EnvironmentConfig,
    gateway: Optional[NotificationGateway] = None,
    classification_client=None,
) -> Services:
    """
    Construct the engine's services.

    Args:
        app_config: Application configuration
        env_config: Environment configuration
        gateway: Notification gateway (built from the configuration if None)
        classification_client: Classification client (built from the
            environment if None; unconfigured when OPENAI_API_KEY is missing)
    """
    gateway = gateway or NotificationGateway(env_config, app_config.email)
    token_issuer = TokenIssuer()
    client = classification_client or build_classification_client(env_config, app_config.classifier)
    classifier = ResponseClassifier(client, batch_concurrency=app_config.classifier.batch_concurrency)

    circumvention = CircumventionService(gateway)
    check_ins = CheckInScheduler(gateway, token_issuer, app_config)
    expiry = ExpiryWorkflow(gateway, token_issuer, app_config, circumvention)
    payments = PaymentLedger(gateway, app_config)

    return Services(
        gateway=gateway,
        introductions=IntroductionService(gateway, token_issuer, app_config, check_in_scheduler=check_ins),
        check_ins=check_ins,
        check_in_responses=CheckInResponseService(classifier, token_issuer, app_config, circumvention),
        circumvention=circumvention,
        expiry=expiry,
        payments=payments,
        jobs=BatchJobRunner(check_ins, expiry, payments, trigger_secret=env_config.trigger_secret),
    )


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and settle the effective log level.

    Log level priority: CLI > LOG_LEVEL environment variable > config file.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif not env_config.log_level:
        env_config.log_level = app_config.logging.level

    return app_config, env_config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="placement-guard",
        description="Placement Guard - candidate protection and anti-circumvention engine",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml, then config/config.yaml)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--run",
        choices=list(JOB_NAMES) + [ALL],
        help="Run one batch pass immediately and exit",
    )
    mode.add_argument(
        "--final-check-in",
        metavar="INTRODUCTION_ID",
        help="Send the final check-in for one introduction and exit",
    )
    parser.add_argument(
        "--actor",
        default="cli",
        help="Name recorded in the audit trail for manual actions (default: cli)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )
    return parser


def main(argv=None) -> int:
    """
    Main entry point for Placement Guard.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    load_dotenv()
    start_time = time.time()
    args = build_parser().parse_args(argv)

    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)
        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=app_config.logging.environment,
        )

        logger.info(
            "Placement Guard starting",
            extra={
                "event": "service.starting",
                "config_path": str(args.config) if args.config else None,
                "log_level": env_config.log_level,
                "mode": "run" if args.run else "final-check-in" if args.final_check_in else "daemon",
            },
        )

        init_database(env_config.database_url)
        services = build_services(app_config, env_config)

        if args.run:
            result = services.jobs.run(args.run)
            for job in result.results:
                logger.info(
                    f"Job '{job.job}' finished: {job.summary}",
                    extra={
                        "event": "service.manual_run.completed",
                        "job": job.job,
                        "had_errors": job.had_errors,
                        "skipped": job.skipped,
                    },
                )
            close_database()
            return 1 if result.had_errors else 0

        if args.final_check_in:
            outcome = services.expiry.send_final_check_in(args.final_check_in, actor=args.actor)
            close_database()
            if not outcome.delivery.success:
                print(f"Final check-in not delivered: {outcome.delivery.error}", file=sys.stderr)
                return 1
            print(f"Final check-in sent for introduction {args.final_check_in}")
            return 0

        return run_daemon(services, app_config, start_time)

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        return 1
    except PlacementGuardError as e:
        print(f"Error ({e.code}): {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error during startup",
            extra={
                "event": "service.startup.failed",
                "error_type": type(e).__name__,
                "error": str(e),
            },
            exc_info=True,
        )
        return 1


def run_daemon(services: Services, app_config: AppConfig, start_time: float) -> int:
    """Run the enabled batch jobs on the configured interval until a signal arrives."""
    scheduler_config = app_config.scheduler
    jobs = scheduler_config.enabled_jobs()
    if not jobs:
        logger.error("No batch jobs enabled in the scheduler section", extra={"event": "service.no_jobs"})
        return 1

    shutdown_event = threading.Event()
    scheduler_service = SchedulerService(
        job_callable=services.jobs.run_job,
        job_names=jobs,
        interval_seconds=scheduler_config.interval_seconds,
        run_on_start=scheduler_config.run_on_start,
        shutdown_event=shutdown_event,
    )

    def signal_handler(signum, frame):
        logger.info(
            f"Received signal {signum}, shutting down",
            extra={"event": "service.signal_received", "signal": signum},
        )
        scheduler_service.shutdown(wait=False)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    scheduler_service.start()
    logger.info("Scheduler started. Press Ctrl+C to stop", extra={"event": "service.daemon_mode.started"})

    try:
        shutdown_event.wait()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down", extra={"event": "service.keyboard_interrupt"})
        scheduler_service.shutdown(wait=False)
    finally:
        close_database()

    logger.info(
        "Placement Guard stopped",
        extra={"event": "service.stopping", "uptime_seconds": round(time.time() - start_time, 2)},
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
