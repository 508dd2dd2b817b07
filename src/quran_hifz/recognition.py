"""
Recognition Port and Attempt Assessment

The engine never does speech-to-text itself. A `Recognizer` delivers
transcripts (with alternatives) and error codes; this module turns a
recognition result into an assessment of the attempt, and decides when to
fall back to VAD-only grading.
"""

from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Callable, Protocol

from .hifz_typing import MistakeLog, PhaseType
from .scoring import (
    DEFAULT_GATE,
    MistakeReport,
    QualityGate,
    best_alternative,
    letter_accuracy,
    letter_feedback,
    mistake_report,
    quality_from_similarity,
    word_accuracy,
)

logger = logging.getLogger(__name__)


# =============================================================================
# RECOGNITION RESULTS AND ERRORS
# =============================================================================

@dataclass(frozen=True)
class RecognitionResult:
    transcript: str
    alternatives: tuple[str, ...] = ()
    is_final: bool = True

    @property
    def candidates(self) -> list[str]:
        """Transcript first, then alternatives, without duplicates."""
        out = []
        for text in (self.transcript, *self.alternatives):
            if text not in out:
                out.append(text)
        return out


class RecognitionErrorCode(str, Enum):
    NOT_ALLOWED = "not-allowed"
    SERVICE_NOT_ALLOWED = "service-not-allowed"
    AUDIO_CAPTURE = "audio-capture"
    NO_SPEECH = "no-speech"
    NETWORK = "network"
    ABORTED = "aborted"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, code: "str | RecognitionErrorCode") -> "RecognitionErrorCode":
        try:
            return cls(code)
        except ValueError:
            return cls.UNKNOWN

    @property
    def input_unavailable(self) -> bool:
        """Errors after which transcript-based grading cannot continue."""
        return self in (
            RecognitionErrorCode.NOT_ALLOWED,
            RecognitionErrorCode.SERVICE_NOT_ALLOWED,
            RecognitionErrorCode.AUDIO_CAPTURE,
        )


class Recognizer(Protocol):
    def start(self) -> None:
        ...

    def stop(self) -> None:
        ...

    def on_result(self, callback: Callable[[RecognitionResult], None]) -> None:
        ...

    def on_error(self, callback: Callable[[str], None]) -> None:
        ...


class RecognitionChannel:
    """
    Subscribes to a recognizer and keeps the latest final result.

    The first input-unavailable error switches the channel to VAD-only mode
    and calls `on_fallback` once; later errors are only logged.
    """

    def __init__(
        self,
        recognizer: Recognizer,
        on_fallback: Callable[[RecognitionErrorCode], None] | None = None,
    ):
        self.recognizer = recognizer
        self.on_fallback = on_fallback
        self.vad_only = False
        self.last_final: RecognitionResult | None = None
        self.last_interim: RecognitionResult | None = None
        self.errors: list[RecognitionErrorCode] = []

        recognizer.on_result(self._handle_result)
        recognizer.on_error(self._handle_error)

    def _handle_result(self, result: RecognitionResult) -> None:
        if result.is_final:
            self.last_final = result
            logger.debug(f"Final transcript: {result.transcript!r} "
                         f"({len(result.alternatives)} alternatives)")
        else:
            self.last_interim = result

    def _handle_error(self, code) -> None:
        code = RecognitionErrorCode.parse(code)
        self.errors.append(code)

        if code.input_unavailable and not self.vad_only:
            self.vad_only = True
            logger.warning(f"Recognition unavailable ({code.value}), falling back to VAD-only grading")
            if self.on_fallback is not None:
                self.on_fallback(code)
        else:
            logger.info(f"Recognition error: {code.value}")

    def start(self) -> bool:
        """Start recognition; returns False in VAD-only mode."""
        if self.vad_only:
            return False
        self.last_final = None
        self.last_interim = None
        self.recognizer.start()
        return True

    def stop(self) -> None:
        if not self.vad_only:
            self.recognizer.stop()

    def take_final(self) -> RecognitionResult | None:
        """Return the last final result and clear it."""
        result, self.last_final = self.last_final, None
        return result


# =============================================================================
# ASSESSMENT
# =============================================================================

@dataclass
class AttemptAssessment:
    """
    Transcript-based assessment of one attempt.

    `accuracy` is the value checked by the strict gate: letter accuracy in the
    familiarize phase, word accuracy otherwise.
    """
    transcript: str
    similarity: float
    word_accuracy: float
    letter_accuracy: float
    accuracy: float
    quality: str
    progress_increment: int
    passed_gate: bool
    feedback: str
    report: MistakeReport
    letter_mistakes: list[str] = field(default_factory=list)

    @property
    def mistakes(self) -> list[MistakeLog]:
        return self.report.logs


def assess_recitation(
    result: RecognitionResult | str,
    expected_text: str,
    expected_words: list[str],
    phase_type: PhaseType = PhaseType.CUMULATIVE,
    gate: QualityGate = DEFAULT_GATE,
) -> AttemptAssessment:
    """
    Assess a recognition result against the reference.

    The alternative closest to the reference is graded.

    Args:
        result: Recognition result (or a bare transcript)
        expected_text: Reference text of the target
        expected_words: Reference words of the target
        phase_type: Current learn phase
        gate: Strict gate thresholds

    Returns:
        AttemptAssessment
    """
    if isinstance(result, str):
        result = RecognitionResult(transcript=result)

    transcript, sim = best_alternative(result.candidates, expected_text)
    words_acc = word_accuracy(transcript, expected_words)
    letters_acc = letter_accuracy(transcript, expected_text)
    report = mistake_report(transcript, expected_text, expected_words)

    letter_mistakes = []
    if phase_type == PhaseType.FAMILIARIZE:
        accuracy = letters_acc
        letters = letter_feedback(transcript, expected_text)
        letter_mistakes = letters.mistakes
        feedback = letters.feedback
    else:
        accuracy = words_acc
        feedback = report.feedback

    quality = quality_from_similarity(sim, accuracy, gate)
    passed = quality.progress_increment > 0

    logger.info(f"Assessment ({phase_type.value}): similarity={sim:.0%}, "
                f"words={words_acc:.0%}, letters={letters_acc:.0%}, "
                f"quality={quality.quality}, +{quality.progress_increment}%")

    return AttemptAssessment(
        transcript=transcript,
        similarity=sim,
        word_accuracy=words_acc,
        letter_accuracy=letters_acc,
        accuracy=accuracy,
        quality=quality.quality,
        progress_increment=quality.progress_increment,
        passed_gate=passed,
        feedback=feedback,
        report=report,
        letter_mistakes=letter_mistakes,
    )
