from dataclasses import dataclass, field
from enum import Enum
from typing import Literal


@dataclass(frozen=True)
class Token:
    """
    One word of a reference passage.

        text (str): the word as written in the reference text.
        index (int): 0-based word position inside the passage.
        length (int): number of characters of the normalized word.
        expected_duration_ms (int): expected recitation time of the word at
            the learner's baseline pace.
        normalized (str): the normalized form used for comparisons.
        char_offset (int): character offset of the word in the raw text.
    """

    text: str
    index: int
    length: int
    expected_duration_ms: int
    normalized: str = ""
    char_offset: int = 0


@dataclass(frozen=True)
class Segment:
    """
    A contiguous run of tokens practiced as one unit.

    `end_token_idx` is exclusive, so `tokens == passage[start:end]`.
    """

    start_token_idx: int
    end_token_idx: int
    tokens: tuple[Token, ...]
    estimated_duration_ms: int

    def __len__(self) -> int:
        return len(self.tokens)


@dataclass(frozen=True)
class SegmentationResult:
    segments: tuple[Segment, ...]
    super_segments: tuple[tuple[int, ...], ...] = ()


@dataclass(frozen=True)
class VoiceSegment:
    """
    start_ts / end_ts: milliseconds on the detector clock.
    confidence: peak normalized energy observed in the interval.
    """

    start_ts: float
    end_ts: float
    confidence: float

    @property
    def duration_ms(self) -> float:
        return self.end_ts - self.start_ts


# =============================================================================
# ATTEMPT TRACE
# =============================================================================

HESITATION_FLAG = "hesitation"
AUTO_ADVANCE_FLAG = "auto_advance"


@dataclass(frozen=True)
class WordTrace:
    """
    Timing of one revealed word during a timed attempt. All times are in
    milliseconds relative to the attempt start.
    """

    word_index: int
    t_start: float
    t_end: float
    matched: bool = True
    latency_to_word: float = 0.0
    inter_pause_prev: float = 0.0
    flags: tuple[str, ...] = ()

    @property
    def is_hesitation(self) -> bool:
        return HESITATION_FLAG in self.flags


@dataclass(frozen=True)
class BoundaryFlags:
    transition_pause_high: bool = False
    hint_used: bool = False


@dataclass(frozen=True)
class AlignmentTrace:
    words: tuple[WordTrace, ...] = ()
    boundary: BoundaryFlags = field(default_factory=BoundaryFlags)

    @property
    def hesitation_count(self) -> int:
        return sum(1 for w in self.words if w.is_hesitation)

    def coverage(self, total_words: int) -> float:
        """Fraction of the target's words that received a trace entry."""
        if total_words <= 0:
            return 0.0
        covered = {w.word_index for w in self.words if 0 <= w.word_index < total_words}
        return len(covered) / total_words


class MistakeType(str, Enum):
    SKIP = "skip"
    INSERT = "insert"
    ORDER = "order"
    PRONUNCIATION = "pronunciation"
    TAJWID = "tajwid"


@dataclass(frozen=True)
class MistakeLog:
    """
    word_index refers to the expected passage, except for `insert` mistakes
    where it is the position of the extra word in the recognized transcript.
    """

    word_index: int
    type: MistakeType


# =============================================================================
# TARGETS
# =============================================================================


@dataclass(frozen=True)
class SegmentTarget:
    idx: int
    kind: Literal["segment"] = field(default="segment", init=False)


@dataclass(frozen=True)
class WindowTarget:
    left: int
    right: int
    kind: Literal["window"] = field(default="window", init=False)


@dataclass(frozen=True)
class WholePassageTarget:
    kind: Literal["ayah"] = field(default="ayah", init=False)


Target = SegmentTarget | WindowTarget | WholePassageTarget


# =============================================================================
# GRADES AND PHASES
# =============================================================================


class Grade(str, Enum):
    """Attempt grade. Comparisons follow quality: PERFECT > ... > FORGOT."""

    PERFECT = "Perfect"
    MINOR = "Minor"
    HESITANT = "Hesitant"
    MAJOR = "Major"
    FORGOT = "Forgot"

    @property
    def rank(self) -> int:
        return _GRADE_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, Grade):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Grade):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Grade):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Grade):
            return NotImplemented
        return self.rank >= other.rank


_GRADE_RANK = {
    Grade.FORGOT: 0,
    Grade.MAJOR: 1,
    Grade.HESITANT: 2,
    Grade.MINOR: 3,
    Grade.PERFECT: 4,
}


class PhaseType(str, Enum):
    FAMILIARIZE = "familiarize"
    BUILD_SEGMENTS = "build_segments"
    CUMULATIVE = "cumulative"


@dataclass(frozen=True)
class Attempt:
    """
    The complete record of one grading cycle.

        target: what was recited.
        elapsed_ms: recitation time of the attempt.
        hesitations: number of hesitation pauses.
        used_hint: whether a hint was revealed during the attempt.
        grade: the computed Grade.
        trace: the AlignmentTrace produced by the overlay, if any.
        coverage: fraction of the target's words that were reached.
        progress_increment: progress percentage earned by the attempt.
        ts: wall-clock timestamp (seconds) when the attempt was recorded.
    """

    target: Target
    elapsed_ms: float
    hesitations: int
    used_hint: bool
    grade: Grade
    trace: AlignmentTrace | None = None
    coverage: float = 1.0
    progress_increment: int = 0
    ts: float = 0.0


@dataclass(frozen=True)
class LearnPhase:
    type: PhaseType
    current_segment: int | None = None
    current_window: tuple[int, int] | None = None
    attempts: tuple[Attempt, ...] = ()
    is_complete: bool = False
    progress: int = 0
