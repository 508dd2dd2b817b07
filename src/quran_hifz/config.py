"""
Engine configuration.

The defaults mirror a fresh learner profile. Per-learner overrides are built
with `EngineConfig.from_mapping`, which accepts both snake_case keys and the
camelCase keys stored in learner profiles.
"""

from dataclasses import dataclass, fields, replace
import logging
from typing import Any, Mapping

logger = logging.getLogger(__name__)


# =============================================================================
# DEFAULTS
# =============================================================================

BASELINE_MS_PER_WORD = 420
HESITATION_THRESHOLD_MS = 380
VOICE_ONSET_MIN_MS = 120
MAX_WORDS_PER_VOICED_BLOCK = 3

NOISE_GATE_THRESHOLD = 0.01  # Normalized RMS below this is silence
SILENCE_THRESHOLD_MS = 450  # Continuous silence the caller may treat as "done"
SILENCE_END_MS = 1200  # Silence after a voiced block that ends an attempt
SETTLE_DELAY_MS = 500  # Wait after the last word is revealed
MAX_ATTEMPTS_PER_PHASE = 10


@dataclass(frozen=True)
class EngineConfig:
    baseline_ms_per_word: int = BASELINE_MS_PER_WORD
    hesitation_threshold_ms: int = HESITATION_THRESHOLD_MS
    voice_onset_min_ms: int = VOICE_ONSET_MIN_MS
    max_words_per_voiced_block: int = MAX_WORDS_PER_VOICED_BLOCK
    noise_gate_threshold: float = NOISE_GATE_THRESHOLD
    silence_threshold_ms: int = SILENCE_THRESHOLD_MS
    silence_end_ms: int = SILENCE_END_MS
    settle_delay_ms: int = SETTLE_DELAY_MS
    max_attempts_per_phase: int = MAX_ATTEMPTS_PER_PHASE

    def __post_init__(self):
        if self.baseline_ms_per_word <= 0:
            raise ValueError(
                f"`baseline_ms_per_word` has to be positive got: `{self.baseline_ms_per_word}`"
            )
        if self.max_words_per_voiced_block < 1:
            raise ValueError(
                f"`max_words_per_voiced_block` has to be >= 1 got: `{self.max_words_per_voiced_block}`"
            )
        if self.max_attempts_per_phase < 1:
            raise ValueError(
                f"`max_attempts_per_phase` has to be >= 1 got: `{self.max_attempts_per_phase}`"
            )

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "EngineConfig":
        """
        Build a config from a learner profile mapping.

        Unknown keys are ignored (profiles carry unrelated settings).

        Args:
            values: mapping with snake_case or camelCase keys

        Returns:
            EngineConfig with the given overrides applied to the defaults
        """
        known = {f.name for f in fields(cls)}
        overrides = {}
        for key, value in values.items():
            name = _camel_to_snake(key)
            if name in known:
                overrides[name] = value
            else:
                logger.debug(f"Ignoring unknown config key: {key}")
        return replace(cls(), **overrides)


def _camel_to_snake(name: str) -> str:
    out = []
    for char in name:
        if char.isupper():
            out.append("_")
            out.append(char.lower())
        else:
            out.append(char)
    return "".join(out)
