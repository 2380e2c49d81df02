"""Non-fatal configuration checks surfaced as warnings."""

import warnings
from typing import Any, Dict, List

from .environment import EnvironmentConfig


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """Inspect the raw YAML dictionary for settings that are legal but unusual.

    Returns:
        List of warning messages
    """
    messages: List[str] = []

    check_ins = config_dict.get("check_ins") or {}
    if isinstance(check_ins, dict):
        schedule = check_ins.get("schedule")
        if isinstance(schedule, list) and schedule:
            last = schedule[-1]
            if isinstance(last, dict) and isinstance(last.get("days_after"), int):
                protection = config_dict.get("protection") or {}
                months = protection.get("period_months", 12) if isinstance(protection, dict) else 12
                if isinstance(months, int) and last["days_after"] > months * 31:
                    messages.append(
                        f"Last check-in ({last['days_after']} days) falls after the "
                        f"{months}-month protection window and will never be sent"
                    )

    classifier = config_dict.get("classifier") or {}
    if isinstance(classifier, dict):
        temperature = classifier.get("temperature")
        if isinstance(temperature, (int, float)) and temperature > 0.5:
            messages.append(
                f"High classifier temperature ({temperature}) makes verdicts less repeatable"
            )

    payments = config_dict.get("payments") or {}
    if isinstance(payments, dict):
        interval = payments.get("reminder_interval_days")
        if isinstance(interval, int) and interval < 3:
            messages.append(
                f"reminder_interval_days={interval} may send employers reminders every few days"
            )

    return messages


def check_environment_warnings(env_config: EnvironmentConfig) -> List[str]:
    """Warnings about optional environment settings that disable features."""
    messages: List[str] = []
    if not env_config.classifier_configured:
        messages.append(
            "OPENAI_API_KEY is not set: every free-text reply will get the "
            "manual-review verdict"
        )
    if not env_config.trigger_secret:
        messages.append("TRIGGER_SECRET is not set: externally triggered batch runs are refused")
    if env_config.app_url.startswith("http://localhost"):
        messages.append(f"APP_URL is {env_config.app_url}: response links will only work locally")
    return messages


def emit_warnings(warning_messages: List[str]) -> None:
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
