"""Prompt templates, incident keywords and analysis-text builder."""

from mailwatch.ews.types import MessageDetail

#: Default classification prompt; ``{body}`` is replaced by the analysis text.
DEFAULT_PROMPT = (
    "Analizá el siguiente correo con información de logs o reportes de servidores. "
    "Respondé solo con la palabra 'ALERTA' si el mensaje describe un problema importante, "
    "o con 'OK' si es normal.\n\n---\n{body}"
)

#: Asks the model to re-express an explanation in neutral Spanish.
TRANSLATION_PROMPT = (
    "Traduce al ESPAÑOL NEUTRO el siguiente análisis, manteniendo la estructura de "
    "secciones y viñetas, pero SIN traducir nombres propios, rutas, comandos ni códigos "
    "de error. Responde solo con la traducción:\n\n{text}"
)

#: Phrases in the message content that indicate an incident even when the
#: model's answer is ambiguous.  Matched case-insensitively as substrings.
PROBLEM_KEYWORDS: tuple[str, ...] = (
    "hubo un problema",
    "problema con la base de datos",
    "error en la base de datos",
    "error 500",
    "error 503",
    "caída del servicio",
    "servicio caido",
    "servicio caído",
    "no responde",
    "timeout",
    "fallo en la conexión",
    "falló la conexión",
    "crash",
    "exception",
    "excepción",
)

# Language markers scored against the first _LANGUAGE_SAMPLE_CHARS of an
# explanation to decide whether it needs translating.
SOURCE_LANGUAGE_HINTS: tuple[str, ...] = (
    "this is",
    "log file",
    "overall",
    "the log",
    "error message",
    "warning",
    "connection reset",
)
TARGET_LANGUAGE_HINTS: tuple[str, ...] = (
    " resumen",
    " errores",
    "causa raíz",
    "acciones sugeridas",
    "servicio",
    "sistema",
    "registro",
)
_LANGUAGE_SAMPLE_CHARS = 400


def render_prompt(template: str, content: str) -> str:
    """Substitute ``{body}`` in the template with the message content."""
    return template.replace("{body}", content)


def render_translation_prompt(text: str, template: str = TRANSLATION_PROMPT) -> str:
    return template.replace("{text}", text)


def build_analysis_text(detail: MessageDetail) -> str:
    """Combine headers and body into the text sent to the model.

    Subject and sender go first so they inform the verdict alongside the body.
    """
    recipients = ", ".join(detail.recipients) or "unknown"
    return (
        f"Asunto: {detail.subject}\n"
        f"Remitente: {detail.sender}\n"
        f"Para: {recipients}\n"
        f"Fecha: {detail.display_date}\n"
        "\n"
        f"{detail.body_text}"
    )


def matches_keyword(content: str, keywords: tuple[str, ...] | list[str] = PROBLEM_KEYWORDS) -> bool:
    """True if any incident keyword occurs in the lower-cased content."""
    text = content.lower()
    return any(kw.lower() in text for kw in keywords)


def needs_translation(
    text: str,
    source_hints: tuple[str, ...] = SOURCE_LANGUAGE_HINTS,
    target_hints: tuple[str, ...] = TARGET_LANGUAGE_HINTS,
) -> bool:
    """True if the text reads as the source language rather than the target.

    Ties, including no hits on either side, count as already translated.
    """
    sample = text[:_LANGUAGE_SAMPLE_CHARS].lower()
    source_score = sum(1 for hint in source_hints if hint in sample)
    target_score = sum(1 for hint in target_hints if hint in sample)
    return source_score > target_score
