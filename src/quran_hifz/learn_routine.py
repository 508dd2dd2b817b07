"""
Learn Routine Module

Grading state machine driving a learner through the mastery phases of one
ayah:

    familiarize -> build_segments -> cumulative -> mastered
    familiarize ------------------> cumulative -> mastered / needs extra practice

The core is the pure function `step(state, event, context)`, returning the
new state and a list of effects for the caller to execute. "Attempt in
flight" is a state of its own, so double transitions are impossible by
construction. `LearnRoutineRunner` wraps `step` with an event queue processed
one event at a time.
"""

from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
import logging
import time
from typing import Callable

from .config import EngineConfig
from .errors import (
    AttemptInProgressError,
    HifzEngineError,
    NoActiveAttemptError,
    RoutineFinishedError,
)
from .hifz_typing import (
    AlignmentTrace,
    Attempt,
    Grade,
    LearnPhase,
    PhaseType,
    SegmentationResult,
    SegmentTarget,
    Target,
    Token,
    WholePassageTarget,
    WindowTarget,
)
from .recognition import AttemptAssessment
from .segmenter import segment_passage, target_tokens

logger = logging.getLogger(__name__)


# =============================================================================
# GRADING
# =============================================================================

PERFECT_RL_RATIO = 0.6
MINOR_RL_RATIO = 0.9
HESITANT_RL_RATIO = 1.3

# Progress earned by a grade when no transcript assessment is available
GRADE_PROGRESS = {
    Grade.PERFECT: 34,
    Grade.MINOR: 20,
    Grade.HESITANT: 10,
    Grade.MAJOR: 0,
    Grade.FORGOT: 0,
}

GRADE_FEEDBACK = {
    Grade.PERFECT: "Perfect! Excellent recitation.",
    Grade.MINOR: "Great! Just minor slips.",
    Grade.HESITANT: "Good, but with some hesitation. Keep practicing.",
    Grade.MAJOR: "Keep practicing this part.",
    Grade.FORGOT: "Let's go over this part again.",
}


def calculate_grade(
    elapsed_ms: float,
    hesitations: int,
    used_hint: bool,
    coverage: float,
    expected_rl_ms: float,
) -> Grade:
    """
    Grade an attempt from its timing.

    Bands are checked best-first; the first whose condition holds wins, and
    Major is the fallback.

    Args:
        elapsed_ms: Recitation time
        hesitations: Number of hesitation pauses
        used_hint: Whether a hint was revealed
        coverage: Fraction of target words reached
        expected_rl_ms: baseline_ms_per_word x words in the target

    Returns:
        Grade
    """
    if coverage <= 0:
        return Grade.FORGOT

    if (elapsed_ms < PERFECT_RL_RATIO * expected_rl_ms and hesitations == 0
            and coverage >= 1.0 and not used_hint):
        return Grade.PERFECT

    if elapsed_ms < MINOR_RL_RATIO * expected_rl_ms and hesitations <= 1 and not used_hint:
        return Grade.MINOR

    if (MINOR_RL_RATIO * expected_rl_ms <= elapsed_ms <= HESITANT_RL_RATIO * expected_rl_ms
            or 2 <= hesitations <= 3):
        return Grade.HESITANT

    return Grade.MAJOR


def expected_recitation_ms(
    segmentation: SegmentationResult,
    tokens,
    target: Target,
    baseline_ms_per_word: int,
) -> int:
    """Expected recitation length of a target. Raises MalformedTargetError out of bounds."""
    return baseline_ms_per_word * len(target_tokens(segmentation, tokens, target))


# =============================================================================
# STATE, EVENTS, EFFECTS
# =============================================================================

class RunnerStatus(str, Enum):
    AWAITING_ATTEMPT = "awaiting_attempt"
    ATTEMPT_IN_FLIGHT = "attempt_in_flight"
    MASTERED = "mastered"
    NEEDS_EXTRA_PRACTICE = "needs_extra_practice"

    @property
    def is_terminal(self) -> bool:
        return self in (RunnerStatus.MASTERED, RunnerStatus.NEEDS_EXTRA_PRACTICE)


@dataclass(frozen=True)
class RunnerState:
    phase: LearnPhase = field(default_factory=lambda: LearnPhase(PhaseType.FAMILIARIZE))
    status: RunnerStatus = RunnerStatus.AWAITING_ATTEMPT
    attempt_count: int = 0
    next_target: Target | None = field(default_factory=WholePassageTarget)
    in_flight: Target | None = None
    last_attempt: Attempt | None = None


@dataclass(frozen=True)
class RoutineContext:
    """Read-only inputs of the state machine."""
    tokens: tuple[Token, ...]
    segmentation: SegmentationResult
    config: EngineConfig = field(default_factory=EngineConfig)


@dataclass(frozen=True)
class AttemptStarted:
    """Start an attempt on `target`, or on the state's next target when None."""
    target: Target | None = None


@dataclass(frozen=True)
class AttemptCompleted:
    elapsed_ms: float
    hesitations: int = 0
    used_hint: bool = False
    coverage: float = 1.0
    trace: AlignmentTrace | None = None
    assessment: AttemptAssessment | None = None
    ts: float = 0.0


@dataclass(frozen=True)
class AttemptAborted:
    pass


@dataclass(frozen=True)
class StartAttempt:
    target: Target


@dataclass(frozen=True)
class PhaseChanged:
    previous: LearnPhase
    current: LearnPhase


@dataclass(frozen=True)
class AyahMastered:
    pass


@dataclass(frozen=True)
class NeedsExtraPractice:
    pass


@dataclass(frozen=True)
class ShowFeedback:
    grade: Grade
    message: str


def initial_state() -> RunnerState:
    return RunnerState()


# =============================================================================
# TRANSITIONS
# =============================================================================

def _segment_mastered(phase: LearnPhase, idx: int) -> bool:
    return any(
        isinstance(a.target, SegmentTarget) and a.target.idx == idx and a.grade >= Grade.MINOR
        for a in phase.attempts
    )


def _window_mastered(phase: LearnPhase, left: int, right: int) -> bool:
    return any(
        isinstance(a.target, WindowTarget) and (a.target.left, a.target.right) == (left, right)
        and a.grade >= Grade.HESITANT
        for a in phase.attempts
    )


def next_segment_target(phase: LearnPhase, segmentation: SegmentationResult) -> tuple[Target | None, LearnPhase]:
    """
    Next target of the build_segments phase.

    Segment i is practiced until an attempt on it grades Minor or better,
    then (unless it is the last) the window (i, i+1) until an attempt grades
    Hesitant or better.

    Returns:
        (target, phase with current_segment / current_window updated);
        target is None once every segment and window is mastered
    """
    count = len(segmentation.segments)
    idx = phase.current_segment or 0

    while idx < count:
        if not _segment_mastered(phase, idx):
            return SegmentTarget(idx), replace(phase, current_segment=idx, current_window=None)
        if idx < count - 1 and not _window_mastered(phase, idx, idx + 1):
            window = (idx, idx + 1)
            return WindowTarget(*window), replace(phase, current_segment=idx, current_window=window)
        idx += 1

    return None, replace(phase, current_segment=idx, current_window=None)


def _enter_phase(phase_type: PhaseType, context: RoutineContext) -> tuple[Target, LearnPhase]:
    if phase_type == PhaseType.BUILD_SEGMENTS:
        target, phase = next_segment_target(LearnPhase(phase_type, current_segment=0), context.segmentation)
        if target is not None:
            return target, phase
        # Nothing to build: go straight to cumulative practice
        phase_type = PhaseType.CUMULATIVE
    return WholePassageTarget(), LearnPhase(phase_type)


def _start(state: RunnerState, event: AttemptStarted, context: RoutineContext):
    if state.status.is_terminal:
        raise RoutineFinishedError(f"Learn routine already finished ({state.status.value})")
    if state.status == RunnerStatus.ATTEMPT_IN_FLIGHT:
        raise AttemptInProgressError(f"An attempt on {state.in_flight} is already in flight")

    target = event.target if event.target is not None else state.next_target
    # Fails loudly on out-of-range targets
    target_tokens(context.segmentation, context.tokens, target)

    return replace(state, status=RunnerStatus.ATTEMPT_IN_FLIGHT, in_flight=target), []


def _abort(state: RunnerState, event: AttemptAborted, context: RoutineContext):
    if state.status != RunnerStatus.ATTEMPT_IN_FLIGHT:
        raise NoActiveAttemptError("No attempt to abort")
    return replace(state, status=RunnerStatus.AWAITING_ATTEMPT, in_flight=None), []


def _grade_attempt(event: AttemptCompleted, target: Target, context: RoutineContext) -> Grade:
    expected_rl = expected_recitation_ms(
        context.segmentation, context.tokens, target, context.config.baseline_ms_per_word
    )
    grade = calculate_grade(event.elapsed_ms, event.hesitations, event.used_hint,
                            event.coverage, expected_rl)

    assessment = event.assessment
    if assessment is not None and not assessment.passed_gate:
        cap = Grade.FORGOT if assessment.word_accuracy <= 0 else Grade.MAJOR
        if grade > cap:
            logger.info(f"Transcript failed the strict gate, grade {grade.value} capped at {cap.value}")
            grade = cap
    return grade


def _complete(state: RunnerState, event: AttemptCompleted, context: RoutineContext):
    if state.status.is_terminal:
        raise RoutineFinishedError(f"Learn routine already finished ({state.status.value})")
    if state.status != RunnerStatus.ATTEMPT_IN_FLIGHT:
        raise NoActiveAttemptError("No attempt in flight to complete")

    target = state.in_flight
    grade = _grade_attempt(event, target, context)

    if event.assessment is not None:
        increment = event.assessment.progress_increment
        message = event.assessment.feedback
    else:
        increment = GRADE_PROGRESS[grade]
        message = GRADE_FEEDBACK[grade]

    attempt = Attempt(
        target=target,
        elapsed_ms=event.elapsed_ms,
        hesitations=event.hesitations,
        used_hint=event.used_hint,
        grade=grade,
        trace=event.trace,
        coverage=event.coverage,
        progress_increment=increment,
        ts=event.ts,
    )

    phase = state.phase
    phase = replace(
        phase,
        attempts=phase.attempts + (attempt,),
        progress=min(100, phase.progress + increment),
    )
    state = replace(state, attempt_count=state.attempt_count + 1, in_flight=None, last_attempt=attempt)
    effects = [ShowFeedback(grade, message)]

    logger.info(f"Attempt {state.attempt_count} on {target.kind} graded {grade.value} "
                f"({phase.type.value}, progress {phase.progress}%)")

    if phase.type == PhaseType.FAMILIARIZE:
        next_type = PhaseType.CUMULATIVE if grade >= Grade.MINOR else PhaseType.BUILD_SEGMENTS
        return _change_phase(state, phase, next_type, context, effects)

    if phase.type == PhaseType.BUILD_SEGMENTS:
        target, phase = next_segment_target(phase, context.segmentation)
        if target is None:
            return _change_phase(state, phase, PhaseType.CUMULATIVE, context, effects)
        effects.append(StartAttempt(target))
        return replace(state, phase=phase, status=RunnerStatus.AWAITING_ATTEMPT, next_target=target), effects

    # Cumulative
    if grade >= Grade.HESITANT:
        phase = replace(phase, is_complete=True)
        logger.info(f"Ayah mastered after {len(phase.attempts)} cumulative attempts")
        effects.append(AyahMastered())
        return replace(state, phase=phase, status=RunnerStatus.MASTERED, next_target=None), effects

    if len(phase.attempts) >= context.config.max_attempts_per_phase:
        phase = replace(phase, is_complete=True)
        logger.info(f"No mastery after {len(phase.attempts)} cumulative attempts, needs extra practice")
        effects.append(NeedsExtraPractice())
        return replace(state, phase=phase, status=RunnerStatus.NEEDS_EXTRA_PRACTICE, next_target=None), effects

    target = WholePassageTarget()
    effects.append(StartAttempt(target))
    return replace(state, phase=phase, status=RunnerStatus.AWAITING_ATTEMPT, next_target=target), effects


def _change_phase(state, finished: LearnPhase, next_type: PhaseType, context, effects):
    finished = replace(finished, is_complete=True)
    target, entered = _enter_phase(next_type, context)
    logger.info(f"Phase change: {finished.type.value} -> {entered.type.value}")
    effects.append(PhaseChanged(finished, entered))
    effects.append(StartAttempt(target))
    return replace(state, phase=entered, status=RunnerStatus.AWAITING_ATTEMPT, next_target=target), effects


_HANDLERS = {
    AttemptStarted: _start,
    AttemptCompleted: _complete,
    AttemptAborted: _abort,
}


def step(state: RunnerState, event, context: RoutineContext) -> tuple[RunnerState, list]:
    """
    Apply one event to the state.

    Args:
        state: Current runner state (never mutated)
        event: AttemptStarted, AttemptCompleted or AttemptAborted
        context: Tokens, segmentation and configuration

    Returns:
        (new_state, effects)

    Raises:
        AttemptInProgressError, NoActiveAttemptError, RoutineFinishedError:
            caller contract violations
        MalformedTargetError: target outside the segmentation
    """
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"Unknown learn routine event: {event!r}")
    return handler(state, event, context)


# =============================================================================
# RUNNER
# =============================================================================

class LearnRoutineRunner:
    """
    Owns the learn state of one ayah and processes events one at a time.

    Events dispatched from an effect listener are queued and processed after
    the current event.
    """

    def __init__(self, tokens, config: EngineConfig | None = None, clock: Callable[[], float] = time.time):
        config = config if config is not None else EngineConfig()
        tokens = tuple(tokens)
        self.context = RoutineContext(
            tokens=tokens,
            segmentation=segment_passage(tokens, config.baseline_ms_per_word),
            config=config,
        )
        self.clock = clock
        self.state = initial_state()
        self.effect_listeners: list[Callable[[object], None]] = []
        self._queue: deque = deque()
        self._processing = False

    def reset(self) -> None:
        """Restart the routine from the familiarize phase."""
        self._queue.clear()
        self.state = initial_state()

    def dispatch(self, event) -> list:
        """
        Queue an event and process the queue.

        Returns:
            Effects produced while processing (empty for a nested dispatch)
        """
        self._queue.append(event)
        if self._processing:
            return []

        self._processing = True
        produced = []
        try:
            while self._queue:
                self.state, effects = step(self.state, self._queue.popleft(), self.context)
                produced.extend(effects)
                for effect in effects:
                    for listener in list(self.effect_listeners):
                        listener(effect)
        except HifzEngineError:
            self._queue.clear()
            raise
        finally:
            self._processing = False
        return produced

    def begin_attempt(self, target: Target | None = None) -> Target:
        self.dispatch(AttemptStarted(target))
        return self.state.in_flight

    def complete_attempt(
        self,
        elapsed_ms: float,
        hesitations: int = 0,
        used_hint: bool = False,
        coverage: float = 1.0,
        trace: AlignmentTrace | None = None,
        assessment: AttemptAssessment | None = None,
    ) -> Attempt:
        self.dispatch(AttemptCompleted(
            elapsed_ms=elapsed_ms,
            hesitations=hesitations,
            used_hint=used_hint,
            coverage=coverage,
            trace=trace,
            assessment=assessment,
            ts=self.clock(),
        ))
        return self.state.last_attempt

    def complete_recitation(self, recitation, assessment: AttemptAssessment | None = None) -> Attempt:
        """Complete the in-flight attempt from a recite overlay result."""
        return self.complete_attempt(
            elapsed_ms=recitation.elapsed_ms,
            hesitations=recitation.hesitations,
            used_hint=recitation.trace.boundary.hint_used,
            coverage=recitation.coverage,
            trace=recitation.trace,
            assessment=assessment,
        )

    def abort_attempt(self) -> None:
        self.dispatch(AttemptAborted())

    def target_tokens(self, target: Target | None = None) -> tuple[Token, ...]:
        target = target if target is not None else self.next_target
        if target is None:
            return ()
        return target_tokens(self.context.segmentation, self.context.tokens, target)

    @property
    def tokens(self) -> tuple[Token, ...]:
        return self.context.tokens

    @property
    def current_phase(self) -> LearnPhase:
        return self.state.phase

    @property
    def segmentation(self) -> SegmentationResult:
        return self.context.segmentation

    @property
    def next_target(self) -> Target | None:
        return self.state.next_target

    @property
    def status(self) -> RunnerStatus:
        return self.state.status

    @property
    def attempt_count(self) -> int:
        return self.state.attempt_count

    @property
    def ayah_mastered(self) -> bool:
        return self.state.status == RunnerStatus.MASTERED

    @property
    def needs_extra_practice(self) -> bool:
        return self.state.status == RunnerStatus.NEEDS_EXTRA_PRACTICE
