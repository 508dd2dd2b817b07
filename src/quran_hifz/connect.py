"""
Connect Practice Module

Practice across ayah boundaries once individual ayat are learned:
- transition practice: the ending of one ayah leads into the beginning of
  the next; the learner recites the beginning
- full recitation: consecutive ayat recited one after another

In both, an item completes after PERFECT_ATTEMPTS_REQUIRED attempts at
word accuracy >= CONNECT_PERFECT_ACCURACY.
"""

from dataclasses import dataclass
import logging

from .scoring import MistakeReport, mistake_report, word_accuracy
from .text_mode import split_words

logger = logging.getLogger(__name__)


CONNECT_PERFECT_ACCURACY = 0.9
PERFECT_ATTEMPTS_REQUIRED = 2
TRANSITION_WORDS = 3


@dataclass
class PracticeItem:
    """
    One thing to recite.

        label: human readable label (e.g. "112:1 -> 112:2").
        prompt: text played or shown before reciting (may be empty).
        target: text the learner has to recite.
    """
    label: str
    prompt: str
    target: str
    perfect_attempts: int = 0
    completed: bool = False
    last_accuracy: float = 0.0


@dataclass
class ConnectAttemptResult:
    item: PracticeItem
    word_accuracy: float
    is_perfect: bool
    report: MistakeReport


def build_transition_pairs(ayat: list[str], words: int = TRANSITION_WORDS, labels: list[str] | None = None) -> list[PracticeItem]:
    """
    Pair the ending of each ayah with the beginning of the next.

    Args:
        ayat: Consecutive ayat texts
        words: Number of words taken from each side of the boundary
        labels: Optional ayah labels, same length as `ayat`

    Returns:
        One PracticeItem per boundary (empty for fewer than two ayat)
    """
    if labels is not None and len(labels) != len(ayat):
        raise ValueError(f"Got {len(labels)} labels for {len(ayat)} ayat")
    labels = labels or [str(i + 1) for i in range(len(ayat))]

    pairs = []
    for i in range(len(ayat) - 1):
        from_words = ayat[i].split()
        to_words = ayat[i + 1].split()
        if not from_words or not to_words:
            logger.warning(f"Skipping transition {labels[i]} -> {labels[i + 1]}: empty ayah text")
            continue
        pairs.append(PracticeItem(
            label=f"{labels[i]} -> {labels[i + 1]}",
            prompt=" ".join(from_words[-words:]),
            target=" ".join(to_words[:words]),
        ))
    return pairs


class ConnectTracker:
    """Walks practice items in order, completing each after repeated perfect attempts."""

    def __init__(self, items: list[PracticeItem]):
        self.items = items
        self.current_index = 0

    @property
    def current(self) -> PracticeItem | None:
        if self.current_index < len(self.items):
            return self.items[self.current_index]
        return None

    @property
    def overall_progress(self) -> float:
        if not self.items:
            return 100.0
        done = sum(1 for item in self.items if item.completed)
        return done / len(self.items) * 100

    @property
    def is_complete(self) -> bool:
        return all(item.completed for item in self.items)

    def record(self, transcript: str) -> ConnectAttemptResult:
        """
        Grade a transcript against the current item.

        Raises:
            IndexError: every item is already completed
        """
        item = self.current
        if item is None:
            raise IndexError("All practice items are completed")

        accuracy = word_accuracy(transcript, split_words(item.target))
        report = mistake_report(transcript, item.target, split_words(item.target))
        is_perfect = accuracy >= CONNECT_PERFECT_ACCURACY

        item.last_accuracy = accuracy
        if is_perfect:
            item.perfect_attempts += 1
            if item.perfect_attempts >= PERFECT_ATTEMPTS_REQUIRED:
                item.completed = True
                logger.info(f"Completed {item.label} ({self.current_index + 1}/{len(self.items)})")
                self.current_index += 1

        return ConnectAttemptResult(item, accuracy, is_perfect, report)


class TransitionTracker(ConnectTracker):
    @classmethod
    def from_ayat(cls, ayat: list[str], labels: list[str] | None = None) -> "TransitionTracker":
        return cls(build_transition_pairs(ayat, labels=labels))


class FullRecitationTracker(ConnectTracker):
    @classmethod
    def from_ayat(cls, ayat: list[str], labels: list[str] | None = None) -> "FullRecitationTracker":
        labels = labels or [str(i + 1) for i in range(len(ayat))]
        return cls([PracticeItem(label=label, prompt="", target=text) for label, text in zip(labels, ayat)])
