import pytest

from quran_hifz.config import EngineConfig
from quran_hifz.errors import AttemptInProgressError
from quran_hifz.hifz_typing import AUTO_ADVANCE_FLAG, HESITATION_FLAG
from quran_hifz.recite_overlay import ReciteOverlayController
from quran_hifz.vad import VoiceActivityDetector

from conftest import make_tokens


@pytest.fixture()
def completed():
    return []


@pytest.fixture()
def overlay(completed):
    return ReciteOverlayController(make_tokens(["qul", "huwa", "allahu", "ahad"]), completed.append)


def recite_word_by_word(overlay):
    """Four voiced blocks with 100 ms pauses, one per expected word slot."""
    overlay.start(0)
    for start, end in [(100, 350), (450, 700), (850, 1100), (1250, 1500)]:
        overlay.on_voice_started(start)
        overlay.on_voice_ended(end)


def test_words_revealed_and_completion_after_settle(overlay, completed):
    recite_word_by_word(overlay)

    assert [w.word_index for w in overlay.words] == [0, 1, 2, 3]
    assert overlay.words[0].latency_to_word == 100
    assert overlay.words[0].inter_pause_prev == 0
    assert overlay.words[1].latency_to_word == 100
    assert overlay.words[1].t_end == 700

    assert overlay.poll(1700) is None
    result = overlay.poll(1750)

    assert result is not None
    assert completed == [result]
    assert result.reason == "settled"
    assert result.elapsed_ms == 1500
    assert result.hesitations == 0
    assert result.coverage == 1.0
    assert not result.trace.boundary.transition_pause_high


def test_completion_callback_fires_once(overlay, completed):
    recite_word_by_word(overlay)
    overlay.poll(1750)
    overlay.poll(5000)
    assert overlay.finish(6000) is None
    assert len(completed) == 1


def test_hesitation_flag(overlay, completed):
    overlay.start(0)
    overlay.on_voice_started(100)
    overlay.on_voice_ended(300)
    overlay.on_voice_started(800)

    second = overlay.words[1]
    assert second.word_index == 1
    assert second.inter_pause_prev == 500
    assert HESITATION_FLAG in second.flags


def test_silence_ends_attempt(overlay, completed):
    overlay.start(0)
    overlay.on_voice_started(100)
    overlay.on_voice_ended(300)

    assert overlay.poll(1499) is None
    result = overlay.poll(1500)

    assert result.reason == "silence"
    assert result.coverage == 0.25
    assert result.elapsed_ms == 300
    assert result.trace.boundary.transition_pause_high
    assert completed == [result]


def test_voice_start_cancels_silence_deadline(overlay, completed):
    overlay.start(0)
    overlay.on_voice_started(100)
    overlay.on_voice_ended(300)
    overlay.on_voice_started(1400)
    assert overlay.poll(1600) is None
    assert completed == []


def test_auto_advance_for_fast_speakers(overlay):
    overlay.start(0)
    overlay.on_voice_started(100)

    overlay.poll(520)
    assert [w.word_index for w in overlay.words] == [0]

    overlay.poll(620)
    advanced = overlay.words[1]
    assert advanced.word_index == 1
    assert advanced.t_start == 500
    assert advanced.latency_to_word == 120
    assert advanced.flags == (AUTO_ADVANCE_FLAG,)

    overlay.poll(1020)
    assert [w.word_index for w in overlay.words] == [0, 1, 2]

    # at most three words per voiced block
    overlay.poll(2000)
    assert overlay.reveal_index == 2


def test_starting_twice_raises(overlay):
    overlay.start(0)
    with pytest.raises(AttemptInProgressError):
        overlay.start(10)


def test_cancel_clears_deadlines_without_callback(overlay, completed):
    overlay.start(0)
    overlay.on_voice_started(100)
    overlay.on_voice_ended(300)
    overlay.cancel()

    assert overlay.poll(5000) is None
    assert completed == []

    overlay.start(6000)
    assert overlay.is_active
    assert overlay.words == ()


def test_finish_delivers_trace_with_hint(overlay, completed):
    overlay.start(0)
    overlay.on_voice_started(100)
    overlay.use_hint()
    overlay.on_voice_ended(300)

    result = overlay.finish(400)
    assert result.reason == "stopped"
    assert result.trace.boundary.hint_used
    assert completed == [result]


def test_empty_target_completes_after_settle(completed):
    overlay = ReciteOverlayController((), completed.append)
    overlay.start(0)
    result = overlay.poll(500)
    assert result.coverage == 0.0
    assert completed == [result]


def test_driven_by_vad_events(completed):
    config = EngineConfig()
    overlay = ReciteOverlayController(make_tokens(["qul", "huwa"]), completed.append, config)
    detector = VoiceActivityDetector(voice_onset_min_ms=config.voice_onset_min_ms)

    detector.start(0)
    overlay.start(0)
    samples = [0, 0.4, 0.4, 0.4, 0, 0, 0.4, 0.4, 0.4, 0, 0, 0, 0, 0, 0, 0]
    for i, energy in enumerate(samples):
        now = i * 100
        for event in detector.process_sample(energy, now):
            overlay.handle_vad_event(event)
        overlay.poll(now)

    assert [w.word_index for w in overlay.words] == [0, 1]
    assert len(completed) == 1
    assert completed[0].coverage == 1.0


def test_noise_spike_is_rolled_back_and_silence_still_ends_attempt(completed):
    config = EngineConfig()
    overlay = ReciteOverlayController(make_tokens(["qul", "huwa", "allahu", "ahad"]), completed.append, config)
    detector = VoiceActivityDetector(voice_onset_min_ms=config.voice_onset_min_ms)

    detector.start(0)
    overlay.start(0)
    events = []
    # a 50 ms cough at t=100, then six seconds of silence
    for now in range(0, 6000, 10):
        energy = 0.5 if 100 <= now <= 150 else 0.0
        for event in detector.process_sample(energy, now):
            events.append(type(event).__name__)
            overlay.handle_vad_event(event)
        overlay.poll(now)

    assert events == ["VoiceStarted", "NoiseDiscarded"]
    assert overlay.words == ()
    assert len(completed) == 1
    assert completed[0].reason == "silence"
    assert completed[0].coverage == 0.0


def test_noise_spike_after_real_speech_keeps_earlier_words(overlay, completed):
    overlay.start(0)
    overlay.on_voice_started(100)
    overlay.on_voice_ended(300)

    overlay.on_voice_started(800)
    assert overlay.reveal_index == 1
    overlay.on_noise_discarded(800, 850)

    assert [w.word_index for w in overlay.words] == [0]
    assert overlay.reveal_index == 0
    assert overlay.poll(1400) is None
    assert not any(AUTO_ADVANCE_FLAG in w.flags for w in overlay.words)

    result = overlay.poll(1500)
    assert result.reason == "silence"
    assert result.coverage == 0.25
    assert result.elapsed_ms == 300
