import pytest

from quran_hifz.config import EngineConfig
from quran_hifz.errors import (
    AttemptInProgressError,
    MalformedTargetError,
    NoActiveAttemptError,
    RoutineFinishedError,
)
from quran_hifz.hifz_typing import Grade, PhaseType, SegmentTarget, WholePassageTarget, WindowTarget
from quran_hifz.learn_routine import (
    AttemptCompleted,
    AttemptStarted,
    AyahMastered,
    LearnRoutineRunner,
    NeedsExtraPractice,
    PhaseChanged,
    RunnerStatus,
    ShowFeedback,
    StartAttempt,
    calculate_grade,
    expected_recitation_ms,
    step,
)
from quran_hifz.recite_overlay import ReciteOverlayController
from quran_hifz.recognition import assess_recitation


@pytest.mark.parametrize("elapsed,hesitations,used_hint,coverage,grade", [
    (500, 0, False, 1.0, Grade.PERFECT),
    (500, 0, False, 0.5, Grade.MINOR),
    (800, 1, False, 1.0, Grade.MINOR),
    (1000, 0, False, 1.0, Grade.HESITANT),
    (1300, 0, False, 1.0, Grade.HESITANT),
    (500, 2, False, 1.0, Grade.HESITANT),
    (500, 3, True, 1.0, Grade.HESITANT),
    (1400, 0, False, 1.0, Grade.MAJOR),
    (500, 4, False, 1.0, Grade.MAJOR),
    (500, 0, True, 1.0, Grade.MAJOR),
    (500, 0, False, 0.0, Grade.FORGOT),
])
def test_calculate_grade_bands(elapsed, hesitations, used_hint, coverage, grade):
    assert calculate_grade(elapsed, hesitations, used_hint, coverage, 1000) == grade


def test_calculate_grade_is_pure():
    results = {calculate_grade(950, 1, False, 1.0, 1000) for _ in range(20)}
    assert results == {Grade.HESITANT}


def test_grade_ordering():
    assert Grade.PERFECT > Grade.MINOR > Grade.HESITANT > Grade.MAJOR > Grade.FORGOT
    assert max([Grade.MAJOR, Grade.MINOR, Grade.FORGOT]) == Grade.MINOR


def test_scenario_a_perfect_grade(ikhlas_tokens):
    runner = LearnRoutineRunner(ikhlas_tokens)
    expected_rl = expected_recitation_ms(runner.segmentation, ikhlas_tokens, WholePassageTarget(), 420)
    assert expected_rl == 1680

    assessment = assess_recitation("qul huwa allahu ahad", "qul huwa allahu ahad",
                                   ["qul", "huwa", "allahu", "ahad"], PhaseType.FAMILIARIZE)
    runner.begin_attempt()
    attempt = runner.complete_attempt(elapsed_ms=0.5 * expected_rl, hesitations=0, assessment=assessment)

    assert attempt.grade == Grade.PERFECT
    assert attempt.progress_increment == 34
    assert runner.current_phase.type == PhaseType.CUMULATIVE


def test_scenario_e_hesitant_familiarize_goes_to_build_segments(eight_word_tokens):
    runner = LearnRoutineRunner(eight_word_tokens)
    assert runner.begin_attempt() == WholePassageTarget()

    effects = runner.dispatch(AttemptCompleted(elapsed_ms=8 * 420, hesitations=0))

    assert runner.state.last_attempt.grade == Grade.HESITANT
    assert runner.current_phase.type == PhaseType.BUILD_SEGMENTS
    assert runner.current_phase.attempts == ()
    assert runner.next_target == SegmentTarget(0)

    changes = [e for e in effects if isinstance(e, PhaseChanged)]
    assert len(changes) == 1
    assert changes[0].previous.type == PhaseType.FAMILIARIZE
    assert changes[0].previous.is_complete
    assert isinstance(effects[0], ShowFeedback)
    assert effects[-1] == StartAttempt(SegmentTarget(0))


def test_build_segments_walks_segments_and_windows(eight_word_tokens):
    runner = LearnRoutineRunner(eight_word_tokens)
    runner.begin_attempt()
    runner.complete_attempt(elapsed_ms=5000)  # Major
    assert runner.current_phase.type == PhaseType.BUILD_SEGMENTS

    # segment 0 (5 words, expected 2100 ms): Major keeps us there
    assert runner.begin_attempt() == SegmentTarget(0)
    runner.complete_attempt(elapsed_ms=4000)
    assert runner.next_target == SegmentTarget(0)

    runner.begin_attempt()
    runner.complete_attempt(elapsed_ms=1000)  # Perfect
    assert runner.next_target == WindowTarget(0, 1)
    assert runner.current_phase.current_window == (0, 1)

    # window (8 words, expected 3360 ms): Hesitant is enough
    runner.begin_attempt()
    runner.complete_attempt(elapsed_ms=3360)
    assert runner.next_target == SegmentTarget(1)
    assert runner.current_phase.current_segment == 1

    # last segment (3 words, expected 1260 ms): Minor completes the phase
    runner.begin_attempt()
    attempt = runner.complete_attempt(elapsed_ms=1000)
    assert attempt.grade == Grade.MINOR
    assert runner.current_phase.type == PhaseType.CUMULATIVE
    assert runner.next_target == WholePassageTarget()


def test_hesitant_segment_is_not_mastered(eight_word_tokens):
    runner = LearnRoutineRunner(eight_word_tokens)
    runner.begin_attempt()
    runner.complete_attempt(elapsed_ms=5000)

    runner.begin_attempt()
    runner.complete_attempt(elapsed_ms=2100)  # Hesitant on a segment
    assert runner.next_target == SegmentTarget(0)


def test_cumulative_mastery(ikhlas_tokens):
    runner = LearnRoutineRunner(ikhlas_tokens)
    runner.begin_attempt()
    runner.complete_attempt(elapsed_ms=500)  # Perfect -> cumulative

    runner.begin_attempt()
    runner.complete_attempt(elapsed_ms=3000)  # Major
    assert not runner.ayah_mastered

    runner.begin_attempt()
    effects = runner.dispatch(AttemptCompleted(elapsed_ms=1680))  # Hesitant

    assert runner.ayah_mastered
    assert not runner.needs_extra_practice
    assert runner.status == RunnerStatus.MASTERED
    assert runner.next_target is None
    assert runner.current_phase.is_complete
    assert AyahMastered() in effects

    with pytest.raises(RoutineFinishedError):
        runner.begin_attempt()


def test_needs_extra_practice_after_max_attempts(ikhlas_tokens):
    runner = LearnRoutineRunner(ikhlas_tokens, EngineConfig(max_attempts_per_phase=3))
    runner.begin_attempt()
    runner.complete_attempt(elapsed_ms=500)
    assert runner.current_phase.type == PhaseType.CUMULATIVE

    effects = []
    for _ in range(3):
        runner.begin_attempt()
        effects = runner.dispatch(AttemptCompleted(elapsed_ms=5000))

    assert runner.needs_extra_practice
    assert not runner.ayah_mastered
    assert runner.attempt_count == 4
    assert len(runner.current_phase.attempts) == 3
    assert NeedsExtraPractice() in effects


def test_progress_is_monotonic_and_capped(eight_word_tokens):
    runner = LearnRoutineRunner(eight_word_tokens)
    runner.begin_attempt()
    runner.complete_attempt(elapsed_ms=5000)

    seen = []
    runner.begin_attempt()
    runner.complete_attempt(elapsed_ms=1000)  # segment 0 Perfect, +34
    seen.append(runner.current_phase.progress)
    runner.begin_attempt()
    runner.complete_attempt(elapsed_ms=1500)  # window Perfect, +34
    seen.append(runner.current_phase.progress)
    runner.begin_attempt()
    effects = runner.dispatch(AttemptCompleted(elapsed_ms=500))  # segment 1 Perfect, +34

    finished = next(e for e in effects if isinstance(e, PhaseChanged)).previous
    seen.append(finished.progress)
    assert seen == [34, 68, 100]


def test_failed_gate_caps_grade(ikhlas_tokens):
    expected = "qul huwa allahu ahad"
    words = expected.split()
    runner = LearnRoutineRunner(ikhlas_tokens)

    runner.begin_attempt()
    partial = assess_recitation("qul huwa", expected, words, PhaseType.FAMILIARIZE)
    attempt = runner.complete_attempt(elapsed_ms=500, assessment=partial)
    assert not partial.passed_gate
    assert attempt.grade == Grade.MAJOR
    assert attempt.progress_increment == 0
    assert runner.current_phase.type == PhaseType.BUILD_SEGMENTS


def test_nothing_recognized_is_forgot(ikhlas_tokens):
    runner = LearnRoutineRunner(ikhlas_tokens)
    runner.begin_attempt()
    silent = assess_recitation("", "qul huwa allahu ahad", ["qul", "huwa", "allahu", "ahad"])
    assert runner.complete_attempt(elapsed_ms=500, assessment=silent).grade == Grade.FORGOT


def test_contract_violations(ikhlas_tokens):
    runner = LearnRoutineRunner(ikhlas_tokens)

    with pytest.raises(NoActiveAttemptError):
        runner.complete_attempt(elapsed_ms=500)
    with pytest.raises(NoActiveAttemptError):
        runner.abort_attempt()

    runner.begin_attempt()
    with pytest.raises(AttemptInProgressError):
        runner.begin_attempt()

    runner.abort_attempt()
    assert runner.status == RunnerStatus.AWAITING_ATTEMPT
    assert runner.attempt_count == 0
    runner.begin_attempt()


def test_malformed_target_fails_loudly(eight_word_tokens):
    runner = LearnRoutineRunner(eight_word_tokens)
    before = runner.state
    with pytest.raises(MalformedTargetError):
        runner.begin_attempt(SegmentTarget(99))
    assert runner.state is before


def test_step_is_pure(ikhlas_tokens):
    runner = LearnRoutineRunner(ikhlas_tokens)
    state, _ = step(runner.state, AttemptStarted(), runner.context)

    first = step(state, AttemptCompleted(elapsed_ms=500), runner.context)
    second = step(state, AttemptCompleted(elapsed_ms=500), runner.context)

    assert first == second
    assert state.status == RunnerStatus.ATTEMPT_IN_FLIGHT
    assert state.phase.attempts == ()


def test_unknown_event_type(ikhlas_tokens):
    runner = LearnRoutineRunner(ikhlas_tokens)
    with pytest.raises(TypeError):
        step(runner.state, object(), runner.context)


def test_effects_dispatched_from_listener_are_queued(ikhlas_tokens):
    runner = LearnRoutineRunner(ikhlas_tokens)

    def auto_start(effect):
        if isinstance(effect, StartAttempt):
            runner.dispatch(AttemptStarted(effect.target))

    runner.effect_listeners.append(auto_start)
    runner.begin_attempt()
    runner.complete_attempt(elapsed_ms=500)

    assert runner.current_phase.type == PhaseType.CUMULATIVE
    assert runner.status == RunnerStatus.ATTEMPT_IN_FLIGHT
    assert runner.state.in_flight == WholePassageTarget()


def test_complete_from_recite_overlay(ikhlas_tokens):
    runner = LearnRoutineRunner(ikhlas_tokens)
    overlay = ReciteOverlayController(runner.target_tokens(), lambda r: None)

    runner.begin_attempt()
    overlay.start(0)
    overlay.on_voice_started(50)
    overlay.on_voice_ended(300)
    result = overlay.finish(2000)

    attempt = runner.complete_recitation(result)
    assert attempt.trace is result.trace
    assert attempt.coverage == 0.25
    assert attempt.grade == Grade.MINOR
