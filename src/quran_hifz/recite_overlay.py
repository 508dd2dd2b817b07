"""
Recite Overlay Module

Drives one timed attempt at a target: words are revealed as the learner
voices them, and a per-word timing trace is recorded for grading.

The controller is event driven. Voice events come from the VAD; timers are
wall-clock deadlines evaluated by `poll(now)`, which the host calls on its
own cadence (for instance on every VAD tick).
"""

from dataclasses import dataclass, replace
import logging
from typing import Callable

from .config import EngineConfig
from .errors import AttemptInProgressError
from .hifz_typing import (
    AUTO_ADVANCE_FLAG,
    HESITATION_FLAG,
    AlignmentTrace,
    BoundaryFlags,
    Token,
    WordTrace,
)
from .vad import NoiseDiscarded, VoiceEnded, VoiceStarted

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletedRecitation:
    """
    What the overlay hands over when an attempt ends.

        trace: the finalized AlignmentTrace.
        elapsed_ms: time from start to the end of the last voiced block (or
            to the finalization time when nothing was voiced).
        hesitations: number of hesitation-flagged words.
        coverage: fraction of target words revealed.
        reason: "settled", "silence" or "stopped".
    """
    trace: AlignmentTrace
    elapsed_ms: float
    hesitations: int
    coverage: float
    reason: str = "settled"


class ReciteOverlayController:
    """
    Timed reveal of a target's words.

    Args:
        tokens: Tokens of the target being recited
        on_complete: Called exactly once per attempt with a CompletedRecitation
        config: Engine configuration (timings and thresholds)
    """

    def __init__(
        self,
        tokens,
        on_complete: Callable[[CompletedRecitation], None],
        config: EngineConfig | None = None,
    ):
        self.tokens: tuple[Token, ...] = tuple(tokens)
        self.on_complete = on_complete
        self.config = config if config is not None else EngineConfig()

        self.is_active = False
        self.start_time = 0.0
        self.expected_end_time = 0.0
        self.reveal_index = -1
        self._reset_attempt()

    def _reset_attempt(self) -> None:
        self._words: list[WordTrace] = []
        self._hint_used = False
        self._last_block_end: float | None = None
        self._block_start: float | None = None
        self._current_word_start: float | None = None
        self._block_words = 0
        self._silence_deadline: float | None = None
        self._settle_deadline: float | None = None
        # Reveal state before the open block, restored when it was only noise
        self._block_mark: tuple[int, int, float | None] | None = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self, now: float) -> None:
        """
        Start an attempt.

        Raises:
            AttemptInProgressError: an attempt is already active
        """
        if self.is_active:
            raise AttemptInProgressError("A recitation attempt is already active")

        self._reset_attempt()
        self.is_active = True
        self.start_time = now
        self.reveal_index = -1
        self.expected_end_time = now + sum(t.expected_duration_ms for t in self.tokens)

        if not self.tokens:
            self._settle_deadline = now + self.config.settle_delay_ms

        logger.info(f"Recitation started: {len(self.tokens)} words, "
                    f"expected end in {self.expected_end_time - now:.0f}ms")

    def cancel(self) -> None:
        """Abandon the attempt: no callback, all deadlines cleared."""
        if not self.is_active:
            return
        self.is_active = False
        self._silence_deadline = None
        self._settle_deadline = None
        self._current_word_start = None
        logger.info("Recitation cancelled")

    def finish(self, now: float) -> CompletedRecitation | None:
        """Explicit stop; delivers the trace if the attempt is still active."""
        return self._finalize(now, reason="stopped")

    def use_hint(self) -> None:
        if self.is_active:
            self._hint_used = True

    @property
    def is_complete(self) -> bool:
        return self.reveal_index >= len(self.tokens) - 1

    @property
    def words(self) -> tuple[WordTrace, ...]:
        return tuple(self._words)

    # -------------------------------------------------------------------------
    # Voice events
    # -------------------------------------------------------------------------

    def _due_index(self, t: float) -> int:
        elapsed = t - self.start_time
        cumulative = 0
        for i, token in enumerate(self.tokens):
            cumulative += token.expected_duration_ms
            if elapsed <= cumulative:
                return i
        return -1

    def on_voice_started(self, t: float) -> None:
        if not self.is_active:
            return

        self._silence_deadline = None
        self._block_start = t
        self._block_words = 0
        self._block_mark = (len(self._words), self.reveal_index, self._settle_deadline)

        due = self._due_index(t)
        if due < 0 or due <= self.reveal_index:
            return

        previous_end = self._last_block_end
        latency = t - (previous_end if previous_end is not None else self.start_time)
        inter_pause = 0.0 if previous_end is None else t - previous_end

        flags = ()
        if inter_pause > self.config.hesitation_threshold_ms:
            flags = (HESITATION_FLAG,)

        self._reveal(WordTrace(
            word_index=due,
            t_start=t - self.start_time,
            t_end=t - self.start_time,
            latency_to_word=latency,
            inter_pause_prev=inter_pause,
            flags=flags,
        ), t)
        self._current_word_start = t
        self._block_words = 1

    def on_voice_ended(self, t: float) -> None:
        if not self.is_active:
            return

        self._last_block_end = t
        self._block_start = None
        self._current_word_start = None
        self._block_mark = None

        if self._words:
            self._words[-1] = replace(self._words[-1], t_end=t - self.start_time)

        self._silence_deadline = t + self.config.silence_end_ms

    def on_noise_discarded(self, start: float, end: float) -> None:
        """
        Roll back a voiced block the VAD discarded as a noise spike.

        Words revealed by the spike are dropped and the silence deadline is
        re-armed from the last real block end (or the spike end when nothing
        was voiced yet).
        """
        if not self.is_active or self._block_start is None:
            return

        if self._block_mark is not None:
            word_count, reveal_index, settle_deadline = self._block_mark
            del self._words[word_count:]
            self.reveal_index = reveal_index
            self._settle_deadline = settle_deadline

        self._block_start = None
        self._current_word_start = None
        self._block_words = 0
        self._block_mark = None

        silence_from = self._last_block_end if self._last_block_end is not None else end
        self._silence_deadline = silence_from + self.config.silence_end_ms
        logger.debug(f"Noise spike {start:.0f}-{end:.0f}ms ignored, {len(self._words)} words kept")

    def handle_vad_event(self, event) -> None:
        """Route a VAD event to the matching handler."""
        if isinstance(event, VoiceStarted):
            self.on_voice_started(event.ts)
        elif isinstance(event, VoiceEnded):
            self.on_voice_ended(event.segment.end_ts)
        elif isinstance(event, NoiseDiscarded):
            self.on_noise_discarded(event.start_ts, event.end_ts)

    def _reveal(self, trace: WordTrace, now: float) -> None:
        self._words.append(trace)
        self.reveal_index = trace.word_index
        logger.debug(f"Revealed word {trace.word_index} at {trace.t_start:.0f}ms "
                     f"(latency={trace.latency_to_word:.0f}ms, flags={trace.flags})")
        if self.is_complete and self._settle_deadline is None:
            self._settle_deadline = now + self.config.settle_delay_ms

    # -------------------------------------------------------------------------
    # Timers
    # -------------------------------------------------------------------------

    def _auto_advance(self, now: float) -> None:
        while (
            self._current_word_start is not None
            and self.reveal_index < len(self.tokens) - 1
            and self._block_words < self.config.max_words_per_voiced_block
        ):
            expected = self.tokens[self.reveal_index].expected_duration_ms
            next_word_time = self._current_word_start + expected

            if now - self._block_start <= expected:
                return
            if now < next_word_time + self.config.voice_onset_min_ms:
                return

            self._reveal(WordTrace(
                word_index=self.reveal_index + 1,
                t_start=next_word_time - self.start_time,
                t_end=next_word_time - self.start_time,
                latency_to_word=self.config.voice_onset_min_ms,
                inter_pause_prev=0.0,
                flags=(AUTO_ADVANCE_FLAG,),
            ), now)
            self._current_word_start = next_word_time
            self._block_words += 1

    def poll(self, now: float) -> CompletedRecitation | None:
        """
        Evaluate auto-advance and deadlines.

        Returns:
            The CompletedRecitation if this poll finalized the attempt
        """
        if not self.is_active:
            return None

        self._auto_advance(now)

        if self._settle_deadline is not None and now >= self._settle_deadline:
            return self._finalize(now, reason="settled")

        if self._silence_deadline is not None and now >= self._silence_deadline:
            return self._finalize(now, reason="silence")

        return None

    # -------------------------------------------------------------------------
    # Completion
    # -------------------------------------------------------------------------

    def _final_silence(self, now: float) -> float:
        if self._block_start is not None or self._last_block_end is None:
            return 0.0
        return now - self._last_block_end

    def _finalize(self, now: float, reason: str) -> CompletedRecitation | None:
        if not self.is_active:
            return None
        self.is_active = False
        self._silence_deadline = None
        self._settle_deadline = None
        self._current_word_start = None

        final_silence = self._final_silence(now)
        trace = AlignmentTrace(
            words=tuple(self._words),
            boundary=BoundaryFlags(
                transition_pause_high=final_silence > self.config.hesitation_threshold_ms,
                hint_used=self._hint_used,
            ),
        )

        if self._last_block_end is not None and self._block_start is None:
            elapsed = self._last_block_end - self.start_time
        else:
            elapsed = now - self.start_time

        result = CompletedRecitation(
            trace=trace,
            elapsed_ms=elapsed,
            hesitations=trace.hesitation_count,
            coverage=trace.coverage(len(self.tokens)),
            reason=reason,
        )
        logger.info(f"Recitation complete ({reason}): {len(trace.words)}/{len(self.tokens)} words, "
                    f"elapsed={elapsed:.0f}ms, hesitations={result.hesitations}")
        self.on_complete(result)
        return result
