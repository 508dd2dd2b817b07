from .config import EngineConfig
from .errors import (
    HifzEngineError,
    MalformedTargetError,
    AttemptInProgressError,
    NoActiveAttemptError,
    RoutineFinishedError,
)
from .hifz_typing import (
    Token,
    Segment,
    SegmentationResult,
    VoiceSegment,
    WordTrace,
    BoundaryFlags,
    AlignmentTrace,
    MistakeType,
    MistakeLog,
    SegmentTarget,
    WindowTarget,
    WholePassageTarget,
    Attempt,
    Grade,
    PhaseType,
    LearnPhase,
)
from .text_mode import (
    IKHLAS_AYAT,
    IKHLAS_TRANSLITERATED,
    normalize_text,
    strip_diacritics,
    split_words,
    tokenize_passage,
)
from .scoring import (
    QualityGate,
    QualityResult,
    MistakeReport,
    similarity,
    word_accuracy,
    letter_accuracy,
    quality_from_similarity,
    mistake_report,
    letter_feedback,
    best_alternative,
    feedback_label,
    Encourager,
)
from .segmenter import segment_passage, segment_text, window_text, target_tokens
from .vad import (
    VoiceActivityDetector,
    VoiceStarted,
    VoiceEnded,
    NoiseDiscarded,
    PollingEnergySource,
    VadSession,
    compute_rms_energy,
    rms_from_frequency_bins,
)
from .recite_overlay import ReciteOverlayController, CompletedRecitation
from .recognition import (
    RecognitionResult,
    RecognitionErrorCode,
    RecognitionChannel,
    AttemptAssessment,
    assess_recitation,
)
from .learn_routine import (
    LearnRoutineRunner,
    RunnerState,
    RunnerStatus,
    calculate_grade,
    step,
)
from .progress import StageProgress
from .connect import build_transition_pairs, TransitionTracker, FullRecitationTracker
from .explain import explain_attempt_for_terminal


__all__ = [
    # Configuration and errors
    "EngineConfig",
    "HifzEngineError",
    "MalformedTargetError",
    "AttemptInProgressError",
    "NoActiveAttemptError",
    "RoutineFinishedError",
    # Data model
    "Token",
    "Segment",
    "SegmentationResult",
    "VoiceSegment",
    "WordTrace",
    "BoundaryFlags",
    "AlignmentTrace",
    "MistakeType",
    "MistakeLog",
    "SegmentTarget",
    "WindowTarget",
    "WholePassageTarget",
    "Attempt",
    "Grade",
    "PhaseType",
    "LearnPhase",
    # Text mode
    "IKHLAS_AYAT",
    "IKHLAS_TRANSLITERATED",
    "normalize_text",
    "strip_diacritics",
    "split_words",
    "tokenize_passage",
    # Scoring
    "QualityGate",
    "QualityResult",
    "MistakeReport",
    "similarity",
    "word_accuracy",
    "letter_accuracy",
    "quality_from_similarity",
    "mistake_report",
    "letter_feedback",
    "best_alternative",
    "feedback_label",
    "Encourager",
    # Segmenter
    "segment_passage",
    "segment_text",
    "window_text",
    "target_tokens",
    # VAD
    "VoiceActivityDetector",
    "VoiceStarted",
    "VoiceEnded",
    "NoiseDiscarded",
    "PollingEnergySource",
    "VadSession",
    "compute_rms_energy",
    "rms_from_frequency_bins",
    # Recite overlay
    "ReciteOverlayController",
    "CompletedRecitation",
    # Recognition
    "RecognitionResult",
    "RecognitionErrorCode",
    "RecognitionChannel",
    "AttemptAssessment",
    "assess_recitation",
    # Learn routine
    "LearnRoutineRunner",
    "RunnerState",
    "RunnerStatus",
    "calculate_grade",
    "step",
    # Practice
    "StageProgress",
    "build_transition_pairs",
    "TransitionTracker",
    "FullRecitationTracker",
    # Explanation
    "explain_attempt_for_terminal",
]
