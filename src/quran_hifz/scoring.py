"""
Recitation Scoring Module

Compares a recognized transcript against the reference text:
- edit-distance similarity over normalized text
- word accuracy through greedy best-match alignment
- position-sensitive letter accuracy (earliest mastery phase only)
- strict quality gate turning similarity into a progress increment
- structured mistake reports (missing / extra / near-miss / order)

Nothing here raises for a mismatch; mismatches are reported as data.
"""

from dataclasses import dataclass, field
import logging
import random

import diff_match_patch as dmp

from .hifz_typing import MistakeLog, MistakeType
from .text_mode import normalize_text, split_words

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

WORD_MATCH_THRESHOLD = 0.6  # Word counts as recited above this similarity
NEAR_MISS_THRESHOLD = 0.5  # Unmatched words above this are near misses
PERFECT_WORD_ACCURACY = 0.95
TOO_MANY_LETTER_MISTAKES = 0.3  # Mistake ratio above which letter feedback collapses

# Letters commonly confused by learners (normalized forms)
CONFUSABLE_LETTERS = [
    ("ض", "ظ", "Daad vs Dhaa"),  # ض / ظ
    ("ص", "س", "Saad vs Seen"),  # ص / س
    ("ط", "ت", "Taa vs Ta"),  # ط / ت
    ("ق", "ك", "Qaaf vs Kaaf"),  # ق / ك
    ("ع", "ا", "Ayn vs Hamza"),  # ع / ا
    ("غ", "خ", "Ghayn vs Khaa"),  # غ / خ
]

ENCOURAGEMENT_MESSAGES = [
    "Mashallah!",
    "You're doing great!",
    "Keep it up!",
    "You're on a roll!",
    "Excellent progress!",
    "Beautiful recitation!",
]


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class QualityGate:
    """
    Empirically tuned thresholds of the strict progress gate.

    Changing them changes product difficulty, not correctness. The perfect
    increment is chosen so that three perfect attempts reach 100% (not two).
    """
    min_similarity: float = 0.30
    min_word_accuracy: float = 0.70
    tiers: tuple[tuple[float, int, str], ...] = (
        (0.95, 34, "perfect"),
        (0.90, 20, "good"),
        (0.80, 10, "fair"),
    )
    floor_increment: int = 5


DEFAULT_GATE = QualityGate()


@dataclass(frozen=True)
class QualityResult:
    quality: str
    progress_increment: int


@dataclass
class MistakeReport:
    """
    feedback: one-line human readable summary
    mistakes: human readable mistake descriptions
    suggestions: what to focus on next
    correct_words: expected words recited exactly
    word_accuracy: greedy word accuracy in [0, 1]
    logs: structured mistakes
    """
    feedback: str
    mistakes: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    correct_words: list[str] = field(default_factory=list)
    word_accuracy: float = 0.0
    logs: list[MistakeLog] = field(default_factory=list)


@dataclass
class LetterFeedback:
    feedback: str
    mistakes: list[str] = field(default_factory=list)
    missed_chars: list[str] = field(default_factory=list)
    letter_accuracy: float = 0.0


# =============================================================================
# EDIT DISTANCE
# =============================================================================

def levenshtein_distance(seq1, seq2) -> int:
    """
    Compute Levenshtein (edit) distance between two sequences.

    Args:
        seq1: First sequence (string or list)
        seq2: Second sequence (string or list)

    Returns:
        Edit distance
    """
    m, n = len(seq1), len(seq2)

    if m == 0:
        return n
    if n == 0:
        return m

    dp = [[0] * (n + 1) for _ in range(m + 1)]

    for i in range(m + 1):
        dp[i][0] = i
    for j in range(n + 1):
        dp[0][j] = j

    for i in range(1, m + 1):
        for j in range(1, n + 1):
            if seq1[i - 1] == seq2[j - 1]:
                dp[i][j] = dp[i - 1][j - 1]
            else:
                dp[i][j] = 1 + min(
                    dp[i - 1][j],      # deletion
                    dp[i][j - 1],      # insertion
                    dp[i - 1][j - 1]   # substitution
                )

    return dp[m][n]


# =============================================================================
# SIMILARITY SCORING
# =============================================================================

def similarity(recognized: str, expected: str) -> float:
    """
    Compute normalized similarity between recognized and expected text.

    The distance is symmetric, but the ratio is normalized against the longer
    of the two strings.

    Args:
        recognized: Recognized transcript
        expected: Reference text

    Returns:
        Similarity score (0.0 to 1.0)
    """
    rec = normalize_text(recognized)
    exp = normalize_text(expected)

    if rec == exp:
        return 1.0

    dist = levenshtein_distance(rec, exp)
    max_len = max(len(rec), len(exp))

    return max(0.0, 1.0 - dist / max_len)


def _normalized_expected_words(expected_words: list[str]) -> list[str]:
    words = (normalize_text(w) for w in expected_words)
    return [w for w in words if w]


def word_accuracy(recognized: str, expected_words: list[str]) -> float:
    """
    Fraction of expected words found in the recognized transcript.

    Each expected word (in order) consumes the unmatched recognized word with
    the highest similarity above WORD_MATCH_THRESHOLD. Extra recognized words
    are not penalized here.

    Args:
        recognized: Recognized transcript
        expected_words: Reference words

    Returns:
        Word accuracy (0.0 to 1.0); 1.0 when there are no expected words
    """
    expected = _normalized_expected_words(expected_words)
    if not expected:
        return 1.0

    recognized_words = split_words(recognized)
    consumed = set()
    correct = 0

    for expected_word in expected:
        best_idx = -1
        best_score = 0.0
        for j, recognized_word in enumerate(recognized_words):
            if j in consumed:
                continue
            score = similarity(recognized_word, expected_word)
            if score > best_score and score > WORD_MATCH_THRESHOLD:
                best_idx = j
                best_score = score
        if best_idx >= 0:
            correct += 1
            consumed.add(best_idx)

    accuracy = correct / len(expected)
    logger.debug(
        f"Word accuracy: {correct}/{len(expected)} ({accuracy:.0%}), "
        f"recognized_words={len(recognized_words)}"
    )
    return accuracy


def letter_accuracy(recognized: str, expected: str) -> float:
    """
    Position-sensitive character accuracy, ignoring spaces.

    No re-alignment is done: a single dropped letter shifts every following
    position. Used only in the earliest mastery phase.

    Args:
        recognized: Recognized transcript
        expected: Reference text

    Returns:
        Exact-position matches divided by expected length
    """
    rec_chars = normalize_text(recognized).replace(" ", "")
    exp_chars = normalize_text(expected).replace(" ", "")

    if not exp_chars:
        return 1.0 if not rec_chars else 0.0

    correct = sum(1 for r, e in zip(rec_chars, exp_chars) if r == e)
    return correct / len(exp_chars)


def quality_from_similarity(
    similarity_score: float,
    word_accuracy_score: float | None = None,
    gate: QualityGate = DEFAULT_GATE,
) -> QualityResult:
    """
    Convert a similarity score into a quality label and progress increment.

    Below `gate.min_similarity`, or below `gate.min_word_accuracy` when a word
    accuracy is given, the attempt earns nothing.

    Args:
        similarity_score: Output of `similarity`
        word_accuracy_score: Output of `word_accuracy` (optional)
        gate: Thresholds and increments

    Returns:
        QualityResult
    """
    if similarity_score < gate.min_similarity:
        logger.warning(f"Strict gate: similarity {similarity_score:.0%} below "
                       f"{gate.min_similarity:.0%}, no progress")
        return QualityResult("poor", 0)

    if word_accuracy_score is not None and word_accuracy_score < gate.min_word_accuracy:
        logger.warning(f"Strict gate: word accuracy {word_accuracy_score:.0%} below "
                       f"{gate.min_word_accuracy:.0%}, no progress "
                       f"(similarity={similarity_score:.0%})")
        return QualityResult("poor", 0)

    for threshold, increment, quality in gate.tiers:
        if similarity_score >= threshold and (
            word_accuracy_score is None or word_accuracy_score >= threshold
        ):
            return QualityResult(quality, increment)

    return QualityResult("poor", gate.floor_increment)


# =============================================================================
# MISTAKE ANALYSIS
# =============================================================================

def character_differences(expected: str, recognized: str) -> list[str]:
    """
    Describe character-level differences between two words.

    Args:
        expected: Expected (normalized) word
        recognized: Recognized (normalized) word

    Returns:
        Human readable differences, 1-based positions in the expected word
    """
    dmp_obj = dmp.diff_match_patch()
    diffs = dmp_obj.diff_main(expected, recognized)

    out = []
    pos = 0
    i = 0
    while i < len(diffs):
        op, data = diffs[i]
        if op == dmp_obj.DIFF_EQUAL:
            pos += len(data)
        elif op == dmp_obj.DIFF_DELETE:
            if i + 1 < len(diffs) and diffs[i + 1][0] == dmp_obj.DIFF_INSERT:
                out.append(f'Character {pos + 1}: "{data}" → "{diffs[i + 1][1]}"')
                i += 1
            else:
                out.append(f'Missing character {pos + 1}: "{data}"')
            pos += len(data)
        else:
            out.append(f'Extra character {pos + 1}: "{data}"')
        i += 1
    return out


def letter_confusions(expected: str, recognized: str) -> list[str]:
    """
    Names of commonly confused letter pairs swapped between two words.

    Args:
        expected: Expected (normalized) word
        recognized: Recognized (normalized) word

    Returns:
        Confusion names, e.g. ["Daad vs Dhaa"]
    """
    dmp_obj = dmp.diff_match_patch()
    diffs = dmp_obj.diff_main(expected, recognized)

    names = []
    for (op, data), (next_op, next_data) in zip(diffs, diffs[1:]):
        if op != dmp_obj.DIFF_DELETE or next_op != dmp_obj.DIFF_INSERT:
            continue
        for a, b, name in CONFUSABLE_LETTERS:
            if {a, b} <= set(data + next_data) and name not in names:
                names.append(name)
    return names


def mistake_report(recognized: str, expected: str, expected_words: list[str]) -> MistakeReport:
    """
    Generate specific feedback about the mistakes of one attempt.

    First pass takes exact word matches; second pass fuzzy-matches the
    remaining expected words against the remaining recognized words. A
    recognized word is consumed at most once.

    Args:
        recognized: Recognized transcript
        expected: Reference text
        expected_words: Reference words

    Returns:
        MistakeReport; log indices refer to `expected_words`, insertions to the
        recognized transcript
    """
    recognized_words = split_words(recognized)
    exp_words = _normalized_expected_words(expected_words)
    # Position of each kept word in `expected_words` (marks normalize to nothing)
    positions = [i for i, w in enumerate(expected_words) if normalize_text(w)]
    accuracy = word_accuracy(recognized, expected_words)

    mistakes = []
    suggestions = []
    correct_words = []
    logs = []

    matched = {}  # expected idx -> recognized idx
    consumed = set()

    # First pass: exact matches
    for i, expected_word in enumerate(exp_words):
        for j, recognized_word in enumerate(recognized_words):
            if j in consumed:
                continue
            if expected_word == recognized_word:
                correct_words.append(expected_word)
                matched[i] = j
                consumed.add(j)
                break

    # Exact matches recited before an earlier expected word are out of order
    furthest = -1
    for i in sorted(matched):
        j = matched[i]
        if j < furthest:
            mistakes.append(f'Word order: "{exp_words[i]}" was recited out of place')
            logs.append(MistakeLog(positions[i], MistakeType.ORDER))
        furthest = max(furthest, j)

    # Second pass: near misses for the unmatched expected words
    for i, expected_word in enumerate(exp_words):
        if i in matched:
            continue

        best_idx = -1
        best_score = 0.0
        for j, recognized_word in enumerate(recognized_words):
            if j in consumed:
                continue
            score = similarity(recognized_word, expected_word)
            if score > best_score and score > NEAR_MISS_THRESHOLD:
                best_idx = j
                best_score = score

        if best_idx < 0:
            mistakes.append(f'Missing word: "{expected_word}"')
            logs.append(MistakeLog(positions[i], MistakeType.SKIP))
            continue

        recognized_word = recognized_words[best_idx]
        char_mistakes = character_differences(expected_word, recognized_word)
        if char_mistakes:
            mistakes.append(f'"{expected_word}" → "{recognized_word}": {", ".join(char_mistakes)}')
        else:
            mistakes.append(f'"{expected_word}" pronounced as "{recognized_word}"')

        confusions = letter_confusions(expected_word, recognized_word)
        for name in confusions:
            mistakes.append(f"Check {name} pronunciation")
        logs.append(MistakeLog(positions[i], MistakeType.TAJWID if confusions else MistakeType.PRONUNCIATION))

        matched[i] = best_idx
        consumed.add(best_idx)

    # Recognized words never matched are extra
    for j, recognized_word in enumerate(recognized_words):
        if j not in consumed:
            mistakes.append(f'Extra word: "{recognized_word}"')
            logs.append(MistakeLog(j, MistakeType.INSERT))

    gate = DEFAULT_GATE.min_word_accuracy
    if accuracy < gate:
        suggestions.append(f"You need at least {gate:.0%} word accuracy. You got {accuracy:.0%}")
    if correct_words:
        suggestions.append('Correct words: "' + '", "'.join(correct_words) + '"')
    if mistakes:
        suggestions.append("Focus on the specific mistakes listed above")
    if any(log.type == MistakeType.TAJWID for log in logs):
        suggestions.append("Pay attention to Arabic letter pronunciation")

    if accuracy >= PERFECT_WORD_ACCURACY and not mistakes:
        feedback = "Perfect! All words and characters correct."
    elif accuracy >= gate:
        feedback = f"Good attempt! {accuracy:.0%} word accuracy."
    else:
        feedback = f"Keep trying! Only {accuracy:.0%} word accuracy. Recite the correct āyah."

    return MistakeReport(
        feedback=feedback,
        mistakes=mistakes,
        suggestions=suggestions,
        correct_words=correct_words,
        word_accuracy=accuracy,
        logs=logs,
    )


def letter_feedback(recognized: str, expected: str) -> LetterFeedback:
    """
    Letter-level feedback for the familiarize phase.

    When more than TOO_MANY_LETTER_MISTAKES of the expected letters are wrong,
    the detailed list is replaced by a single generic message.

    Args:
        recognized: Recognized transcript
        expected: Reference text

    Returns:
        LetterFeedback
    """
    accuracy = letter_accuracy(recognized, expected)
    rec_chars = normalize_text(recognized).replace(" ", "")
    exp_chars = normalize_text(expected).replace(" ", "")

    mistakes = []
    missed_chars = []
    for i in range(max(len(rec_chars), len(exp_chars))):
        expected_char = exp_chars[i] if i < len(exp_chars) else ""
        recognized_char = rec_chars[i] if i < len(rec_chars) else ""

        if expected_char and recognized_char:
            if expected_char != recognized_char:
                missed_chars.append(expected_char)
                mistakes.append(f'Pronounced "{recognized_char}" instead of "{expected_char}"')
        elif expected_char:
            missed_chars.append(expected_char)
            mistakes.append(f'Missing "{expected_char}"')
        else:
            mistakes.append(f'Extra "{recognized_char}"')

    mistake_ratio = len(mistakes) / len(exp_chars) if exp_chars else 0.0
    if mistake_ratio > TOO_MANY_LETTER_MISTAKES:
        return LetterFeedback(
            feedback="You got many letters wrong. Please recite the correct āyah.",
            mistakes=["Too many mistakes - please try reciting the āyah correctly"],
            missed_chars=[],
            letter_accuracy=accuracy,
        )

    if accuracy >= 0.85 and not mistakes:
        feedback = "Perfect! All characters correct."
    elif accuracy >= 0.7:
        feedback = f"Good attempt! {accuracy:.0%} accuracy."
    else:
        feedback = f"Keep trying! Only {accuracy:.0%} accuracy."

    return LetterFeedback(feedback, mistakes, missed_chars, accuracy)


def check_words_spoken(recognized: str, expected_words: list[str]) -> list[bool]:
    """Which expected words appear verbatim in the recognized transcript."""
    rec = normalize_text(recognized)
    return [normalize_text(word) in rec for word in expected_words]


def best_alternative(alternatives: list[str], expected: str) -> tuple[str, float]:
    """
    Pick the recognition alternative closest to the expected text.

    Args:
        alternatives: Candidate transcripts, best-first as delivered
        expected: Reference text

    Returns:
        (transcript, similarity); ties keep the earlier candidate
    """
    best = ("", similarity("", expected))
    for i, transcript in enumerate(alternatives):
        score = similarity(transcript, expected)
        logger.debug(f"Alternative {i + 1}: similarity={score:.2f}")
        if i == 0 or score > best[1]:
            best = (transcript, score)
    return best


# =============================================================================
# FEEDBACK TEXT
# =============================================================================

def feedback_label(similarity_score: float) -> str:
    if similarity_score >= 0.95:
        return "Perfect!"
    if similarity_score >= 0.80:
        return "Great!"
    if similarity_score >= 0.60:
        return "Good"
    if similarity_score >= 0.30:
        return "Keep trying"
    return "Try again"


def should_show_struggling_warning(attempt_count: int, successful_attempts: int) -> bool:
    return attempt_count >= 5 and successful_attempts == 0


class Encourager:
    """Picks encouragement messages from an injectable random source."""

    def __init__(self, rng: random.Random | None = None, messages: list[str] | None = None):
        self.rng = rng if rng is not None else random.Random()
        self.messages = list(messages) if messages else list(ENCOURAGEMENT_MESSAGES)

    def next_message(self) -> str:
        return self.rng.choice(self.messages)
