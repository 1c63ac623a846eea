"""Message classifier — Ollama verdict plus keyword fallback."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import httpx

from mailwatch.processing.prompts import (
    DEFAULT_PROMPT,
    PROBLEM_KEYWORDS,
    TRANSLATION_PROMPT,
    matches_keyword,
    needs_translation,
    render_prompt,
    render_translation_prompt,
)
from mailwatch.processing.types import ClassificationResult, Verdict

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:11434/api/generate"
DEFAULT_MODEL = "llama3"
_TIMEOUT_SECONDS = 30.0


class InferenceError(Exception):
    """Raised when the inference endpoint errors, times out or answers garbage."""


def resolve_verdict(
    answer: str,
    content: str,
    keywords: Sequence[str] = PROBLEM_KEYWORDS,
) -> Verdict:
    """Turn the model's raw answer into a verdict.

    An answer containing exactly one of the tokens ALERTA / OK is final.
    Otherwise (both or neither) the original content is checked against the
    incident keywords: a hit means ALERT, no hit means OK.
    """
    upper = answer.upper()
    has_alert = Verdict.ALERT.value in upper
    has_ok = Verdict.OK.value in upper

    if has_alert and not has_ok:
        return Verdict.ALERT
    if has_ok and not has_alert:
        return Verdict.OK

    if matches_keyword(content, tuple(keywords)):
        logger.info(
            "Heuristic: ambiguous model answer but content looks like an incident — forcing ALERT"
        )
        return Verdict.ALERT

    logger.info("Heuristic: model answered neither ALERTA nor OK clearly — assuming OK")
    return Verdict.OK


class MessageClassifier:
    """Sends message text to an Ollama generate endpoint and returns a verdict.

    Sampling is deterministic (temperature 0) and every call is bounded by a
    30 second timeout.  When ``translate`` is on and the explanation reads as
    English, a second call re-expresses it in Spanish; failure of that call
    keeps the original explanation.

    Usage::

        async with httpx.AsyncClient() as http:
            classifier = MessageClassifier(http, model="llama3")
            result = await classifier.classify(text)
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        api_url: str = DEFAULT_API_URL,
        model: str = DEFAULT_MODEL,
        prompt_template: str = DEFAULT_PROMPT,
        keywords: Sequence[str] = PROBLEM_KEYWORDS,
        translate: bool = True,
        timeout: float = _TIMEOUT_SECONDS,
    ) -> None:
        self._http = http
        self._api_url = api_url
        self._model = model
        self._prompt_template = prompt_template
        self._keywords = tuple(keywords)
        self._translate = translate
        self._timeout = timeout

    async def classify(self, content: str) -> ClassificationResult:
        """Classify one message's analysis text.

        Raises:
            InferenceError: if the classification call fails or times out.
        """
        answer = await self._generate(render_prompt(self._prompt_template, content))
        logger.info("Model answer: %r", answer)

        verdict = resolve_verdict(answer, content, self._keywords)
        explanation = answer
        if self._translate and needs_translation(explanation):
            explanation = await self._translated(explanation)
        return ClassificationResult(verdict=verdict, explanation=explanation)

    async def _translated(self, text: str) -> str:
        """Return the Spanish rendering of text, or text itself if that fails."""
        try:
            translated = await self._generate(
                render_translation_prompt(text, TRANSLATION_PROMPT)
            )
        except InferenceError as exc:
            logger.error("Translation of model explanation failed: %s", exc)
            return text
        if not translated:
            return text
        logger.info("Model explanation translated to Spanish")
        return translated

    async def _generate(self, prompt: str) -> str:
        """One non-streaming generate call; returns the stripped ``response`` text."""
        payload = {
            "model": self._model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": 0},
        }
        try:
            response = await self._http.post(
                self._api_url, json=payload, timeout=self._timeout
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as exc:
            raise InferenceError(f"Inference call timed out after {self._timeout:.0f}s") from exc
        except httpx.HTTPError as exc:
            raise InferenceError(f"Inference call failed: {exc}") from exc
        except ValueError as exc:
            raise InferenceError(f"Inference endpoint returned invalid JSON: {exc}") from exc

        if not isinstance(data, dict):
            raise InferenceError(f"Unexpected inference response: {data!r}")
        return str(data.get("response") or "").strip()
