"""
Text Mode Module for Quran Hifz

This module canonicalizes reference and recognized text so that comparisons
are diacritic- and case-insensitive, and turns a reference passage into
timed word tokens.

Normalization rules, applied in order:
1. strip tashkeel, Quranic annotation marks and any other combining mark
2. fold letter-shape variants (alef forms, alef maksura)
3. fold teh marbuta to heh
4. collapse whitespace
5. trim
6. lowercase (for transliterated text)
"""

import re
import unicodedata

from .config import BASELINE_MS_PER_WORD
from .hifz_typing import Token


# =============================================================================
# CONSTANTS: Sample Passages
# =============================================================================

# Surah Al-Ikhlas (112), Uthmani script with tashkeel
IKHLAS_AYAT = [
    "قُلْ هُوَ ٱللَّهُ أَحَدٌ",
    "ٱللَّهُ ٱلصَّمَدُ",
    "لَمْ يَلِدْ وَلَمْ يُولَدْ",
    "وَلَمْ يَكُن لَّهُۥ كُفُوًا أَحَدٌۢ",
]

# Transliteration used by learners who do not read Arabic script yet
IKHLAS_TRANSLITERATED = [
    "qul huwa allahu ahad",
    "allahu assamad",
    "lam yalid wa lam yulad",
    "wa lam yakun lahu kufuwan ahad",
]


# =============================================================================
# CONSTANTS: Arabic Diacritics (Tashkeel) and Marks
# =============================================================================

# Arabic combining marks (diacritics/harakat and Quranic annotation marks)
ARABIC_DIACRITICS = {
    "\u064B",  # Tanween Fath (ً)
    "\u064C",  # Tanween Damm (ٌ)
    "\u064D",  # Tanween Kasr (ٍ)
    "\u064E",  # Fatha (َ)
    "\u064F",  # Damma (ُ)
    "\u0650",  # Kasra (ِ)
    "\u0651",  # Shadda (ّ)
    "\u0652",  # Sukoon (ْ)
    "\u0653",  # Maddah above (ٓ)
    "\u0654",  # Hamza above (ٔ)
    "\u0655",  # Hamza below (ٕ)
    "\u0656",  # Subscript alef (ٖ)
    "\u0657",  # Inverted damma (ٗ)
    "\u0658",  # Mark noon ghunna (٘)
    "\u0659",  # Zwarakay (ٙ)
    "\u065A",  # Vowel sign small v above (ٚ)
    "\u065B",  # Vowel sign inverted small v above (ٛ)
    "\u065C",  # Vowel sign dot below (ٜ)
    "\u065D",  # Reversed damma (ٝ)
    "\u065E",  # Fatha with two dots (ٞ)
    "\u065F",  # Wavy hamza below (ٟ)
    "\u0670",  # Dagger alif / superscript alef (ٰ)
    "\u06D6",  # Small high ligature sad with lam with alef maksura (ۖ)
    "\u06D7",  # Small high ligature qaf with lam with alef maksura (ۗ)
    "\u06D8",  # Small high meem initial form (ۘ)
    "\u06D9",  # Small high lam alef (ۙ)
    "\u06DA",  # Small high jeem (ۚ)
    "\u06DB",  # Small high three dots (ۛ)
    "\u06DC",  # Small high seen (ۜ)
    "\u06DF",  # Small high rounded zero (۟)
    "\u06E0",  # Small high upright rectangular zero (۠)
    "\u06E1",  # Small high dotless head of khah (ۡ)
    "\u06E2",  # Small high meem isolated form (ۢ)
    "\u06E3",  # Small low seen (ۣ)
    "\u06E4",  # Small high madda (ۤ)
    "\u06E7",  # Small high yeh (ۧ)
    "\u06E8",  # Small high noon (ۨ)
    "\u06EA",  # Empty centre low stop (۪)
    "\u06EB",  # Empty centre high stop (۫)
    "\u06EC",  # Rounded high stop with filled centre (۬)
    "\u06ED",  # Small low meem (ۭ)
}

# Marks that are not combining characters but are never pronounced
SILENT_MARKS = {
    "\u0640",  # Tatweel (ـ)
    "\u06E5",  # Small waw (ۥ)
    "\u06E6",  # Small yeh (ۦ)
    "\u06DD",  # End of ayah (۝)
    "\u06DE",  # Rub el hizb (۞)
    "\u06E9",  # Place of sajdah (۩)
}

# Letter-shape variants folded to one canonical letter
LETTER_VARIANTS = {
    "\u0623": "\u0627",  # أ -> ا
    "\u0625": "\u0627",  # إ -> ا
    "\u0622": "\u0627",  # آ -> ا
    "\u0671": "\u0627",  # ٱ -> ا
    "\u0649": "\u064A",  # ى -> ي
}

TEH_MARBUTA = "\u0629"  # ة
HEH = "\u0647"  # ه

_WHITESPACE_RE = re.compile(r"\s+")
_WORD_RE = re.compile(r"\S+")
_NON_WORD_RE = re.compile(r"[^\w']+")


# =============================================================================
# CONSTANTS: Word Duration Classes
# =============================================================================

# Short particles are recited faster than content words
SHORT_PARTICLES = {
    # transliterated
    "wa", "fi", "min", "ila", "ala", "an", "ma", "bi", "ka", "li", "hu",
    "hatha", "hathihi", "dhalika", "tilka",
    # normalized Arabic
    "و", "ف", "في", "من", "الي", "علي", "ان", "ما", "ب", "ك", "ل", "هو",
    "هذا", "هذه", "ذلك", "تلك", "لا", "لم", "قد", "ثم", "او", "يا",
}

# Long words (mostly divine names) are recited slower
LONG_WORDS = {
    # transliterated
    "arrahman", "arraheem", "almalik", "alqudus", "assalam", "almumin",
    "almuhaymin", "alaziz", "aljabbar", "almutakabbir",
    # normalized Arabic
    "الرحمن", "الرحيم", "الملك", "القدوس", "السلام", "المومن",
    "المهيمن", "العزيز", "الجبار", "المتكبر",
}

PARTICLE_MULTIPLIER = 0.7
LONG_WORD_MULTIPLIER = 1.2
SHORT_WORD_MULTIPLIER = 0.8  # length <= 2
LONG_LENGTH_MULTIPLIER = 1.1  # length >= 6


# =============================================================================
# CORE FUNCTIONS
# =============================================================================

# Arabic, Arabic Supplement, Arabic Extended-A, Presentation Forms A and B
ARABIC_BLOCKS = (
    (0x0600, 0x06FF),
    (0x0750, 0x077F),
    (0x08A0, 0x08FF),
    (0xFB50, 0xFDFF),
    (0xFE70, 0xFEFF),
)


def is_arabic_letter(char: str) -> bool:
    """True for a single Arabic base letter; marks and annotation signs are not letters."""
    if len(char) != 1 or char in ARABIC_DIACRITICS or char in SILENT_MARKS:
        return False
    if unicodedata.category(char) not in ("Lo", "Lm"):
        return False
    code_point = ord(char)
    return any(low <= code_point <= high for low, high in ARABIC_BLOCKS)


def strip_diacritics(text: str) -> str:
    """
    Remove tashkeel, Quranic annotation marks and any other combining mark.

    The text is decomposed (NFD) first so that precomposed letters such as
    hamza-on-alef lose their mark as well.

    Args:
        text: Raw text

    Returns:
        Text without combining marks
    """
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(
        c for c in decomposed
        if not unicodedata.combining(c)
        and c not in ARABIC_DIACRITICS
        and c not in SILENT_MARKS
    )


def fold_letter_variants(text: str) -> str:
    """Fold alef/yeh shape variants and teh marbuta to their base letters."""
    out = []
    for char in text:
        char = LETTER_VARIANTS.get(char, char)
        if char == TEH_MARBUTA:
            char = HEH
        out.append(char)
    return "".join(out)


def normalize_text(text: str) -> str:
    """
    Canonicalize text for comparison.

    Idempotent: `normalize_text(normalize_text(x)) == normalize_text(x)`.

    Args:
        text: Reference or recognized text (Arabic script or transliteration)

    Returns:
        Canonical text
    """
    if not text:
        return ""
    text = strip_diacritics(text)
    text = fold_letter_variants(text)
    text = _WHITESPACE_RE.sub(" ", text)
    return text.strip().lower()


def split_words(text: str) -> list[str]:
    """Normalize text and split it into words."""
    normalized = normalize_text(text)
    if not normalized:
        return []
    return normalized.split(" ")


# =============================================================================
# TOKENIZATION
# =============================================================================

def expected_word_duration_ms(word: str, baseline_ms_per_word: int = BASELINE_MS_PER_WORD) -> int:
    """
    Estimate how long a normalized word takes to recite.

    Args:
        word: Normalized word
        baseline_ms_per_word: Learner's average pace

    Returns:
        Expected duration in milliseconds
    """
    length = len(word)

    if word in SHORT_PARTICLES:
        multiplier = PARTICLE_MULTIPLIER
    elif word in LONG_WORDS:
        multiplier = LONG_WORD_MULTIPLIER
    elif length <= 2:
        multiplier = SHORT_WORD_MULTIPLIER
    elif length >= 6:
        multiplier = LONG_LENGTH_MULTIPLIER
    else:
        multiplier = 1.0

    length_weight = max(0.5, min(1.5, length / 4))

    return round(baseline_ms_per_word * multiplier * length_weight)


def tokenize_passage(text: str, baseline_ms_per_word: int = BASELINE_MS_PER_WORD) -> tuple[Token, ...]:
    """
    Split a reference passage into timed word tokens.

    Standalone marks (waqf signs, ayah-end markers, punctuation) are dropped.

    Args:
        text: The reference passage
        baseline_ms_per_word: Learner's average pace

    Returns:
        Tuple of Token, `index` being the word position
    """
    tokens = []
    for match in _WORD_RE.finditer(text):
        raw = match.group(0)
        normalized = _NON_WORD_RE.sub("", normalize_text(raw))
        if not normalized:
            continue
        tokens.append(Token(
            text=raw,
            index=len(tokens),
            length=len(normalized),
            expected_duration_ms=expected_word_duration_ms(normalized, baseline_ms_per_word),
            normalized=normalized,
            char_offset=match.start(),
        ))
    return tuple(tokens)


def passage_words(tokens) -> list[str]:
    """Return the raw words of a token sequence."""
    return [t.text for t in tokens]
