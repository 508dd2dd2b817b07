"""
Segmenter Module

Splits a reference passage into bounded practice chunks ("segments") of
3-6 words, so a learner can build an ayah up piece by piece.

Greedy left-to-right scan:
- before adding a word, close the current segment (once it has 3+ words)
  when it already has 6 words or the word would push it past 3500 ms
- after adding a word, close on a good stopping point once it has 3+ words
- a lone grammatical particle is never the last word of a closed segment;
  it stays attached to the word that follows it

Passages producing more than 6 segments are additionally grouped into
consecutive pairs ("super-segments") for coarser cumulative practice.
"""

import logging

from .config import BASELINE_MS_PER_WORD
from .errors import MalformedTargetError
from .hifz_typing import (
    Segment,
    SegmentationResult,
    SegmentTarget,
    Target,
    Token,
    WholePassageTarget,
    WindowTarget,
)
from .text_mode import normalize_text

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

MIN_SEGMENT_WORDS = 3
MAX_SEGMENT_WORDS = 6
MAX_SEGMENT_DURATION_MS = 3500
LONG_WORD_LENGTH = 5  # Words this long are likely content words
NATURAL_BREAK_EVERY = 4  # Token positions divisible by this are natural breaks
SUPER_SEGMENT_MIN_SEGMENTS = 7

# Particles that merge with the following content word
LONE_PARTICLES = {
    # transliterated
    "wa", "fa", "thumma", "fi", "min", "ila", "ala", "an", "ma", "bi", "ka",
    "li", "hu", "hi", "ha",
    # normalized Arabic
    "و", "ف", "ثم", "في", "من", "الي", "علي", "ان", "ما", "ب", "ك", "ل",
}

# Connecting words after which a segment may close
CONNECTOR_WORDS = {"wa", "fa", "thumma", "summa", "و", "ف", "ثم"}


# =============================================================================
# HELPERS
# =============================================================================

def _word(token: Token) -> str:
    return token.normalized or normalize_text(token.text)


def is_lone_particle(token: Token) -> bool:
    return _word(token) in LONE_PARTICLES


def is_good_stopping_point(token: Token, position: int) -> bool:
    """
    Check whether a segment may close after this token.

    Args:
        token: The token just added to the segment
        position: Position of the token in the passage

    Returns:
        True after connectors, long words, and every NATURAL_BREAK_EVERY-th token
    """
    word = _word(token)

    if word in CONNECTOR_WORDS:
        return True

    if len(word) >= LONG_WORD_LENGTH:
        return True

    return position > 0 and position % NATURAL_BREAK_EVERY == 0


def _make_segment(start: int, words: list[Token]) -> Segment:
    return Segment(
        start_token_idx=start,
        end_token_idx=start + len(words),
        tokens=tuple(words),
        estimated_duration_ms=sum(t.expected_duration_ms for t in words),
    )


# =============================================================================
# SEGMENTATION
# =============================================================================

def build_super_segments(segment_count: int) -> tuple[tuple[int, ...], ...]:
    """
    Group segment indices into consecutive pairs for long passages.

    A trailing odd segment forms a singleton group. Passages with 6 segments
    or fewer get no grouping.
    """
    if segment_count < SUPER_SEGMENT_MIN_SEGMENTS:
        return ()

    groups = []
    for i in range(0, segment_count, 2):
        if i + 1 < segment_count:
            groups.append((i, i + 1))
        else:
            groups.append((i,))
    return tuple(groups)


def segment_passage(tokens, baseline_ms_per_word: int = BASELINE_MS_PER_WORD) -> SegmentationResult:
    """
    Split tokens into practice segments.

    Every token belongs to exactly one segment, in order. Only the final
    segment may have fewer than MIN_SEGMENT_WORDS words.

    Args:
        tokens: Passage tokens (with expected durations)
        baseline_ms_per_word: Learner's pace, used for tokens without a duration

    Returns:
        SegmentationResult
    """
    tokens = list(tokens)
    if not tokens:
        return SegmentationResult(segments=(), super_segments=())

    segments = []
    start = 0
    current = []
    duration = 0

    for i, token in enumerate(tokens):
        word_duration = token.expected_duration_ms or baseline_ms_per_word

        over_word_limit = len(current) >= MAX_SEGMENT_WORDS
        over_duration_limit = duration + word_duration > MAX_SEGMENT_DURATION_MS

        if (over_word_limit or over_duration_limit) and len(current) >= MIN_SEGMENT_WORDS:
            # Keep a trailing particle with the word it introduces
            carried = []
            if len(current) > MIN_SEGMENT_WORDS and is_lone_particle(current[-1]):
                carried = [current.pop()]
            segments.append(_make_segment(start, current))
            start += len(current)
            current = carried
            duration = sum(t.expected_duration_ms or baseline_ms_per_word for t in carried)

        current.append(token)
        duration += word_duration

        if is_lone_particle(token) and i < len(tokens) - 1:
            continue

        if len(current) >= MIN_SEGMENT_WORDS and is_good_stopping_point(token, i):
            segments.append(_make_segment(start, current))
            start += len(current)
            current = []
            duration = 0

    if current:
        segments.append(_make_segment(start, current))

    super_segments = build_super_segments(len(segments))
    logger.debug(
        f"Segmented {len(tokens)} tokens into {len(segments)} segments "
        f"{[len(s) for s in segments]}, super_segments={len(super_segments)}"
    )
    return SegmentationResult(segments=tuple(segments), super_segments=super_segments)


# =============================================================================
# TARGET RESOLUTION
# =============================================================================

def segment_text(segment: Segment) -> str:
    return " ".join(t.text for t in segment.tokens)


def window_text(left: Segment, right: Segment) -> str:
    return f"{segment_text(left)} {segment_text(right)}"


def _check_segment_index(segmentation: SegmentationResult, idx: int) -> Segment:
    count = len(segmentation.segments)
    if not isinstance(idx, int) or idx < 0 or idx >= count:
        raise MalformedTargetError(
            f"Segment index `{idx}` out of range for {count} segments"
        )
    return segmentation.segments[idx]


def target_tokens(segmentation: SegmentationResult, tokens, target: Target) -> tuple[Token, ...]:
    """
    Resolve a practice target to its tokens.

    Args:
        segmentation: Current segmentation of the passage
        tokens: All passage tokens
        target: Segment, window or whole-passage target

    Returns:
        Tokens of the target, in passage order

    Raises:
        MalformedTargetError: the target is outside the segmentation bounds
    """
    if isinstance(target, WholePassageTarget):
        return tuple(tokens)

    if isinstance(target, SegmentTarget):
        return _check_segment_index(segmentation, target.idx).tokens

    if isinstance(target, WindowTarget):
        left = _check_segment_index(segmentation, target.left)
        right = _check_segment_index(segmentation, target.right)
        if target.right != target.left + 1:
            raise MalformedTargetError(
                f"Window ({target.left}, {target.right}) must span two adjacent segments"
            )
        return left.tokens + right.tokens

    raise MalformedTargetError(f"Unknown target: {target!r}")


def target_text(segmentation: SegmentationResult, tokens, target: Target) -> str:
    """Raw reference text of a target."""
    return " ".join(t.text for t in target_tokens(segmentation, tokens, target))
