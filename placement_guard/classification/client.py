"""Clients for the language-model classification service.

``build_classification_client`` decides once, at startup, which client the
classifier gets: a real OpenAI-backed client, or an
``UnconfiguredClassificationClient`` that carries the reason it cannot
classify. The classifier turns either kind of failure into its safe default.
"""

import json
from typing import Any, Dict, Optional

from openai import OpenAI, OpenAIError

from placement_guard.config.environment import EnvironmentConfig
from placement_guard.config.models import ClassifierConfig
from placement_guard.logging import get_logger

from .prompt import build_messages

logger = get_logger(__name__, component="classification")


class ClassificationUnavailableError(Exception):
    """Raised when the classification service cannot produce a usable answer."""

    pass


class OpenAIClassificationClient:
    """Chat-completions client returning the raw JSON verdict as a dict.

    Args:
        api_key: OpenAI API key
        config: Model, temperature, token and timeout settings
        base_url: Optional alternative API endpoint
        client: Prebuilt ``OpenAI`` instance (tests inject a mock)
    """

    def __init__(
        self,
        api_key: str,
        config: Optional[ClassifierConfig] = None,
        base_url: Optional[str] = None,
        client: Optional[OpenAI] = None,
    ):
        self.config = config or ClassifierConfig()
        self._client = client or OpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=self.config.timeout_seconds,
            max_retries=1,
        )

    @property
    def configured(self) -> bool:
        return True

    def classify(self, reply_text: str, company_name: str) -> Dict[str, Any]:
        """Ask the service for a verdict.

        Raises:
            ClassificationUnavailableError: On API errors, empty or non-JSON output
        """
        try:
            response = self._client.chat.completions.create(
                model=self.config.model,
                messages=build_messages(reply_text, company_name),
                response_format={"type": "json_object"},
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except OpenAIError as e:
            raise ClassificationUnavailableError(f"Classification request failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ClassificationUnavailableError("Empty response from classification service")

        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            raise ClassificationUnavailableError(f"Classification output is not JSON: {e}") from e

        if not isinstance(parsed, dict):
            raise ClassificationUnavailableError("Classification output is not a JSON object")
        return parsed


class UnconfiguredClassificationClient:
    """Stand-in used when no API key is configured; every call fails with ``reason``."""

    def __init__(self, reason: str):
        self.reason = reason

    @property
    def configured(self) -> bool:
        return False

    def classify(self, reply_text: str, company_name: str) -> Dict[str, Any]:
        raise ClassificationUnavailableError(self.reason)


def build_classification_client(env_config: EnvironmentConfig, config: ClassifierConfig):
    """Construct the classification client for this process.

    ``OPENAI_MODEL`` from the environment overrides the configured model.
    """
    if not env_config.classifier_configured:
        logger.warning(
            "OPENAI_API_KEY is not set; replies will be queued for manual review",
            extra={"event": "classification.unconfigured"},
        )
        return UnconfiguredClassificationClient("Classification service not configured (OPENAI_API_KEY missing)")

    if env_config.openai_model:
        config = config.model_copy(update={"model": env_config.openai_model})

    logger.info(
        f"Classification client ready (model {config.model})",
        extra={"event": "classification.configured", "model": config.model},
    )
    return OpenAIClassificationClient(
        api_key=env_config.openai_api_key,
        config=config,
        base_url=env_config.openai_base_url,
    )
