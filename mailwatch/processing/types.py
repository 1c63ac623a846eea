"""Types for the message classification pipeline."""

from dataclasses import dataclass
from enum import Enum


class Verdict(str, Enum):
    """Binary classification outcome.

    Values are the literal tokens the model is asked to answer with.
    """

    ALERT = "ALERTA"
    OK = "OK"


@dataclass(frozen=True)
class ClassificationResult:
    """Verdict plus the model's explanation, possibly translated.

    Produced by MessageClassifier.classify() and consumed by the watcher to
    decide whether to notify and what summary to send.  Never persisted.
    """

    verdict: Verdict
    explanation: str = ""

    @property
    def is_alert(self) -> bool:
        return self.verdict is Verdict.ALERT
