"""
Stage progress tracking.

Accumulates the progress increments of one practice stage (listen-shadow,
read-recite, recall...) and the counters shown next to the progress bar.
"""

from dataclasses import dataclass, replace

from .scoring import PERFECT_WORD_ACCURACY, should_show_struggling_warning

MAX_PROGRESS = 100


@dataclass(frozen=True)
class StageProgress:
    """
    progress: accumulated percentage, monotonic and capped at MAX_PROGRESS.
    attempts: attempts recorded, including zero-progress ones.
    successful_attempts: attempts that earned progress.
    consecutive_perfect: perfect attempts in a row (word accuracy >= 0.95).
    """
    progress: int = 0
    attempts: int = 0
    successful_attempts: int = 0
    consecutive_perfect: int = 0

    @property
    def is_complete(self) -> bool:
        return self.progress >= MAX_PROGRESS

    @property
    def struggling(self) -> bool:
        return should_show_struggling_warning(self.attempts, self.successful_attempts)

    def record(self, increment: int, word_accuracy: float | None = None) -> "StageProgress":
        """
        Record one attempt.

        Args:
            increment: Progress increment from the quality gate (0 when gated out)
            word_accuracy: Word accuracy of the attempt, if known

        Returns:
            The updated StageProgress
        """
        if increment < 0:
            raise ValueError(f"`increment` has to be >= 0 got: `{increment}`")

        perfect = word_accuracy is not None and word_accuracy >= PERFECT_WORD_ACCURACY
        return replace(
            self,
            progress=min(MAX_PROGRESS, self.progress + increment),
            attempts=self.attempts + 1,
            successful_attempts=self.successful_attempts + (1 if increment > 0 else 0),
            consecutive_perfect=self.consecutive_perfect + 1 if perfect else 0,
        )
