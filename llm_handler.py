"""
Gemini client wrapper with per-model retries and a fallback model chain.
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Callable, List, Optional, Tuple, Union

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from data_models import ApiError, RunLog

LOGGER = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
RETRYABLE_STATUSES = {429, 529}
OVERLOADED_STATUS = 529
# Transport faults outside the SDK's error hierarchy are treated as an outage.
TRANSPORT_FAILURE_STATUS = 503

_FENCE_PATTERN = re.compile(r"```json|```")


def is_retryable(status: int) -> bool:
    """Rate limits, overloads and server errors are worth another attempt."""
    return status in RETRYABLE_STATUSES or status >= 500


def backoff_delay(status: int, attempt: int, base_seconds: float = 1.0) -> float:
    """
    Compute the wait before the next attempt.

    Plain server errors back off twice as long as rate-limit and overload
    responses.

    Args:
        status: Status code of the failed attempt.
        attempt: 1-based attempt number that just failed.
        base_seconds: Scale factor applied to the delay.

    Returns:
        Delay in seconds.
    """
    multiplier = 2.0 if status >= 500 and status != OVERLOADED_STATUS else 1.0
    return (2 ** attempt) * multiplier * base_seconds


def parse_json_array(text: str) -> list:
    """
    Parse a model response that should hold a JSON array.

    Code fences are stripped first. Anything that is not a JSON array,
    including malformed JSON, becomes an empty list.

    Args:
        text: Raw model output.

    Returns:
        Parsed list, or [] when the text holds no array.
    """
    cleaned = _FENCE_PATTERN.sub("", text or "").strip()
    try:
        data = json.loads(cleaned)
    except (json.JSONDecodeError, TypeError):
        LOGGER.debug("Model output is not valid JSON (first 200 chars): %s", cleaned[:200])
        return []
    if not isinstance(data, list):
        LOGGER.debug("Model output is JSON but not an array: %s", type(data).__name__)
        return []
    return data


class GeminiClient:
    """Completion client that retries each model before falling back to the next."""

    def __init__(
        self,
        api_key: str,
        primary_model: str,
        fallback_model: str,
        backoff_base_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize the Gemini client.

        Args:
            api_key: Google Gemini API key.
            primary_model: Model used when a call does not name one.
            fallback_model: Cheaper model tried after the requested one fails.
            backoff_base_seconds: Scale factor for retry delays.
            sleep: Function used to wait between attempts.
        """
        genai.configure(api_key=api_key)
        self.primary_model = primary_model
        self.fallback_model = fallback_model
        self._backoff_base = backoff_base_seconds
        self._sleep = sleep
        self._generation_config = {
            "temperature": 0.2,
            "top_p": 0.9,
            "candidate_count": 1,
        }
        LOGGER.info(
            "Gemini client initialized (primary %s, fallback %s)",
            self.primary_model,
            self.fallback_model,
        )

    def model_chain(self, model: Optional[str] = None) -> List[str]:
        """Return the requested model followed by the fallback, without duplicates."""
        chain = [model or self.primary_model, self.fallback_model]
        return [m for i, m in enumerate(chain) if m and m not in chain[:i]]

    def _send(self, model: str, max_tokens: int, prompt: str) -> Tuple[int, str]:
        """
        Perform a single generate call.

        Args:
            model: Gemini model name.
            max_tokens: Output token budget.
            prompt: Prompt text.

        Returns:
            Tuple of (status code, response text). SDK errors are mapped to
            their HTTP status instead of being raised.
        """
        try:
            response = genai.GenerativeModel(model).generate_content(
                prompt,
                generation_config={**self._generation_config, "max_output_tokens": max_tokens},
            )
        except google_exceptions.GoogleAPICallError as exc:
            return (int(exc.code or TRANSPORT_FAILURE_STATUS), str(exc))
        except Exception as exc:
            return (TRANSPORT_FAILURE_STATUS, f"{type(exc).__name__}: {exc}")

        try:
            text = response.text or ""
        except ValueError:
            # Blocked or empty candidates have no text parts.
            LOGGER.warning("Gemini %s returned no text parts", model)
            text = ""
        return (200, text.strip())

    def complete(
        self,
        prompt: str,
        max_tokens: int,
        model: Optional[str] = None,
        run_log: Optional[RunLog] = None,
    ) -> Union[str, ApiError]:
        """
        Run a prompt through the model chain with retries.

        Args:
            prompt: Prompt text.
            max_tokens: Output token budget.
            model: Model to try first; defaults to the primary model.
            run_log: Run-scoped log receiving one entry per attempt.

        Returns:
            Response text on success, otherwise an ApiError carrying the last
            observed status.
        """
        log = run_log or RunLog(LOGGER)
        chain = self.model_chain(model)
        last_status = 0

        for current_model in chain:
            for attempt in range(1, MAX_ATTEMPTS + 1):
                status, text = self._send(current_model, max_tokens, prompt)
                if status == 200:
                    log.add("Gemini success with %s on attempt %d", current_model, attempt)
                    return text

                last_status = status
                log.add(
                    "Gemini %s attempt %d/%d failed: status %d",
                    current_model,
                    attempt,
                    MAX_ATTEMPTS,
                    status,
                )
                if not is_retryable(status) or attempt == MAX_ATTEMPTS:
                    LOGGER.debug("Last error body from %s: %s", current_model, text[:200])
                    break

                delay = backoff_delay(status, attempt, self._backoff_base)
                log.add("Retrying in %.1fs...", delay)
                self._sleep(delay)

            if current_model != chain[-1]:
                log.add("Falling back to next model...")

        message = f"Gemini API error {last_status} after all retries exhausted"
        log.add(message)
        return ApiError(status=last_status, message=message)
