"""Tests for MessageClassifier and the verdict heuristics — Ollama is mocked."""

import json

import httpx
import pytest

from mailwatch.processing.classifier import (
    InferenceError,
    MessageClassifier,
    resolve_verdict,
)
from mailwatch.processing.types import ClassificationResult, Verdict


# ── Helpers ────────────────────────────────────────────────────────────────────

_ENGLISH_ANSWER = (
    "ALERTA. This is a log file showing a connection reset warning on the database host."
)
_SPANISH_TRANSLATION = "ALERTA. Registro con un aviso de conexión reiniciada en el servidor."


def make_classifier(
    *answers: str | httpx.Response | Exception,
    **kwargs: object,
) -> tuple[MessageClassifier, list[dict[str, object]]]:
    """Classifier whose Ollama endpoint replies with successive answers."""
    queue = list(answers)
    payloads: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        payloads.append(json.loads(request.content))
        answer = queue.pop(0)
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, httpx.Response):
            return answer
        return httpx.Response(200, json={"model": "llama3", "response": answer, "done": True})

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MessageClassifier(http, **kwargs), payloads  # type: ignore[arg-type]


# ── resolve_verdict ────────────────────────────────────────────────────────────


class TestResolveVerdict:
    def test_alert_only_is_alert(self) -> None:
        assert resolve_verdict("ALERTA", "nightly report, all fine") is Verdict.ALERT

    def test_ok_only_is_ok(self) -> None:
        assert resolve_verdict("OK", "nightly report, all fine") is Verdict.OK

    def test_tokens_are_case_insensitive(self) -> None:
        assert resolve_verdict("alerta: disco lleno", "x") is Verdict.ALERT

    def test_both_tokens_with_keyword_forces_alert(self) -> None:
        assert resolve_verdict("ALERTA u OK", "request timeout on api") is Verdict.ALERT

    def test_neither_token_with_keyword_forces_alert(self) -> None:
        assert resolve_verdict("No estoy seguro", "gateway timeout") is Verdict.ALERT

    def test_neither_token_without_keyword_is_ok(self) -> None:
        assert resolve_verdict("No estoy seguro", "backup completed") is Verdict.OK

    def test_both_tokens_without_keyword_is_ok(self) -> None:
        assert resolve_verdict("ALERTA u OK", "backup completed") is Verdict.OK

    def test_keyword_never_downgrades_explicit_alert(self) -> None:
        assert resolve_verdict("ALERTA", "backup completed") is Verdict.ALERT

    def test_keyword_does_not_override_explicit_ok(self) -> None:
        assert resolve_verdict("OK", "a timeout was retried successfully") is Verdict.OK

    def test_keyword_match_is_case_insensitive(self) -> None:
        assert resolve_verdict("???", "Unhandled EXCEPTION in worker") is Verdict.ALERT

    def test_custom_keywords(self) -> None:
        assert resolve_verdict("???", "disk full", keywords=["disk full"]) is Verdict.ALERT
        assert resolve_verdict("???", "timeout", keywords=["disk full"]) is Verdict.OK


# ── MessageClassifier.classify ─────────────────────────────────────────────────


class TestClassify:
    async def test_alert_answer(self) -> None:
        classifier, _ = make_classifier("ALERTA")

        result = await classifier.classify("Asunto: x\n\ncpu at 100%")

        assert result == ClassificationResult(verdict=Verdict.ALERT, explanation="ALERTA")
        assert result.is_alert

    async def test_ok_answer(self) -> None:
        classifier, _ = make_classifier("OK")
        result = await classifier.classify("all good")
        assert result.verdict is Verdict.OK
        assert not result.is_alert

    async def test_ambiguous_answer_with_keyword_is_alert(self) -> None:
        classifier, _ = make_classifier("No puedo determinarlo")
        result = await classifier.classify("El servicio no responde, error 503")
        assert result.verdict is Verdict.ALERT
        assert result.explanation == "No puedo determinarlo"

    async def test_answer_is_stripped(self) -> None:
        classifier, _ = make_classifier("  OK \n")
        result = await classifier.classify("x")
        assert result.explanation == "OK"

    async def test_payload_is_deterministic_non_streaming(self) -> None:
        classifier, payloads = make_classifier("OK", model="mistral")

        await classifier.classify("hello")

        payload = payloads[0]
        assert payload["model"] == "mistral"
        assert payload["stream"] is False
        assert payload["options"] == {"temperature": 0}

    async def test_prompt_template_substitutes_body(self) -> None:
        classifier, payloads = make_classifier("OK", prompt_template="Check this:\n{body}\nEnd")

        await classifier.classify("disk report")

        assert payloads[0]["prompt"] == "Check this:\ndisk report\nEnd"

    async def test_missing_response_field_is_empty_explanation(self) -> None:
        classifier, _ = make_classifier(httpx.Response(200, json={"done": True}))
        result = await classifier.classify("backup completed")
        assert result.verdict is Verdict.OK
        assert result.explanation == ""


class TestClassifyFailures:
    async def test_timeout_raises_inference_error(self) -> None:
        classifier, _ = make_classifier(httpx.ReadTimeout("timed out"))
        with pytest.raises(InferenceError, match="timed out"):
            await classifier.classify("x")

    async def test_http_error_status_raises_inference_error(self) -> None:
        classifier, _ = make_classifier(httpx.Response(500, text="model not loaded"))
        with pytest.raises(InferenceError):
            await classifier.classify("x")

    async def test_invalid_json_raises_inference_error(self) -> None:
        classifier, _ = make_classifier(httpx.Response(200, text="<html>"))
        with pytest.raises(InferenceError, match="invalid JSON"):
            await classifier.classify("x")

    async def test_non_object_json_raises_inference_error(self) -> None:
        classifier, _ = make_classifier(httpx.Response(200, json=["OK"]))
        with pytest.raises(InferenceError):
            await classifier.classify("x")


# ── Translation ────────────────────────────────────────────────────────────────


class TestTranslation:
    async def test_english_explanation_is_translated(self) -> None:
        classifier, payloads = make_classifier(_ENGLISH_ANSWER, _SPANISH_TRANSLATION)

        result = await classifier.classify("db connection reset")

        assert result.verdict is Verdict.ALERT
        assert result.explanation == _SPANISH_TRANSLATION
        assert len(payloads) == 2
        assert _ENGLISH_ANSWER in str(payloads[1]["prompt"])
        assert payloads[1]["options"] == {"temperature": 0}

    async def test_translation_failure_keeps_original(self) -> None:
        classifier, _ = make_classifier(_ENGLISH_ANSWER, httpx.ReadTimeout("timed out"))

        result = await classifier.classify("db connection reset")

        assert result.verdict is Verdict.ALERT
        assert result.explanation == _ENGLISH_ANSWER

    async def test_empty_translation_keeps_original(self) -> None:
        classifier, _ = make_classifier(_ENGLISH_ANSWER, "")
        result = await classifier.classify("db connection reset")
        assert result.explanation == _ENGLISH_ANSWER

    async def test_spanish_explanation_not_translated(self) -> None:
        classifier, payloads = make_classifier(
            "ALERTA. Resumen: el servicio de registro del sistema falló."
        )

        await classifier.classify("x")

        assert len(payloads) == 1

    async def test_translation_disabled(self) -> None:
        classifier, payloads = make_classifier(_ENGLISH_ANSWER, translate=False)

        result = await classifier.classify("x")

        assert result.explanation == _ENGLISH_ANSWER
        assert len(payloads) == 1
