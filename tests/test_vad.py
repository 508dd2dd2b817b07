import asyncio
import random

import numpy as np
import pytest

from quran_hifz.hifz_typing import VoiceSegment
from quran_hifz.recite_overlay import ReciteOverlayController
from quran_hifz.text_mode import tokenize_passage
from quran_hifz.vad import (
    NoiseDiscarded,
    PollingEnergySource,
    VadSession,
    VoiceActivityDetector,
    VoiceEnded,
    VoiceStarted,
    compute_rms_energy,
    rms_from_frequency_bins,
)

TICK_MS = 100


def feed(detector, samples, start=0, tick=TICK_MS):
    events = []
    for i, energy in enumerate(samples):
        events.extend(detector.process_sample(energy, start + i * tick))
    return events


class FakeEnergySource:
    def __init__(self):
        self.callbacks = []

    def subscribe(self, callback):
        self.callbacks.append(callback)
        return lambda: self.callbacks.remove(callback)

    def emit(self, energy, now):
        for callback in list(self.callbacks):
            callback(energy, now)


def test_scenario_d_single_voiced_block():
    detector = VoiceActivityDetector(noise_gate_threshold=0.01)
    detector.start(0)
    events = feed(detector, [0, 0, 0.5, 0.5, 0.5, 0, 0])

    assert detector.segments == (VoiceSegment(200, 400, 0.5),)
    assert detector.segments[0].confidence == pytest.approx(0.5)
    assert events == [VoiceStarted(200), VoiceEnded(VoiceSegment(200, 400, 0.5))]


def test_short_voiced_interval_is_discarded():
    detector = VoiceActivityDetector(voice_onset_min_ms=120)
    detector.start(0)
    events = feed(detector, [0, 0.5, 0.5, 0, 0])

    assert detector.segments == ()
    assert events[-1] == NoiseDiscarded(100, 200)


def test_confidence_is_running_max():
    detector = VoiceActivityDetector()
    detector.start(0)
    feed(detector, [0.2, 0.6, 0.3, 0.3, 0])
    assert detector.segments[0].confidence == 0.6


def test_samples_ignored_when_not_listening():
    detector = VoiceActivityDetector()
    assert feed(detector, [0.5, 0.5, 0]) == []


def test_stop_discards_open_segment_and_keeps_closed_ones():
    detector = VoiceActivityDetector()
    detector.start(0)
    feed(detector, [0.5, 0.5, 0.5, 0, 0.5, 0.5])
    assert detector.current_segment is not None

    detector.stop()
    assert detector.current_segment is None
    assert detector.segments == (VoiceSegment(0, 200, 0.5),)
    assert not detector.is_listening


def test_start_clears_previous_session():
    detector = VoiceActivityDetector()
    detector.start(0)
    feed(detector, [0.5, 0.5, 0.5, 0])
    detector.stop()

    detector.start(1000)
    assert detector.segments == ()


def test_silence_tracking():
    detector = VoiceActivityDetector(silence_threshold_ms=450)
    detector.start(0)
    feed(detector, [0.5, 0.5, 0.5, 0, 0])

    assert detector.silence_duration(1000) == 800
    assert detector.silence_exceeded(1000)
    assert not detector.silence_exceeded(500)
    assert detector.silence_exceeded(500, threshold_ms=200)


@pytest.mark.parametrize("seed", range(5))
def test_segments_ordered_and_non_overlapping(seed):
    rng = random.Random(seed)
    samples = [rng.choice([0.0, 0.005, 0.3, 0.8]) for _ in range(300)]
    detector = VoiceActivityDetector()
    detector.start(0)
    feed(detector, samples, tick=16)

    previous_end = None
    for segment in detector.segments:
        assert segment.end_ts >= segment.start_ts
        assert segment.duration_ms >= detector.voice_onset_min_ms
        if previous_end is not None:
            assert segment.start_ts > previous_end
        previous_end = segment.end_ts


def test_compute_rms_energy():
    assert compute_rms_energy(np.full(16, 0.5, dtype=np.float32)) == pytest.approx(0.5)
    assert compute_rms_energy(np.array([], dtype=np.float32)) == 0.0


def test_rms_from_frequency_bins():
    assert rms_from_frequency_bins([255, 255, 255]) == pytest.approx(1.0)
    assert rms_from_frequency_bins(np.zeros(8, dtype=np.uint8)) == 0.0
    assert rms_from_frequency_bins([]) == 0.0


def test_vad_session_forwards_events_and_unsubscribes():
    source = FakeEnergySource()
    session = VadSession(VoiceActivityDetector(), source)
    received = []
    session.add_listener(received.append)

    session.start(0)
    for i, energy in enumerate([0, 0.5, 0.5, 0.5, 0]):
        source.emit(energy, i * TICK_MS)

    assert received == [VoiceStarted(100), VoiceEnded(VoiceSegment(100, 300, 0.5))]

    session.stop()
    assert source.callbacks == []
    assert session.segments == (VoiceSegment(100, 300, 0.5),)


def test_polling_energy_source_fans_out_samples():
    levels = iter([0.0, 0.5])
    clock = iter([0.0, 100.0])
    source = PollingEnergySource(lambda: next(levels), lambda: next(clock))
    received = []
    unsubscribe = source.subscribe(lambda energy, now: received.append((energy, now)))

    async def run():
        await source.poll_once()
        await source.poll_once()

    asyncio.run(run())
    assert received == [(0.0, 0.0), (0.5, 100.0)]

    unsubscribe()
    assert source._subscribers == []


def test_polling_energy_source_start_stop():
    ticks = []

    async def run():
        source = PollingEnergySource(lambda: 0.2, lambda: 0.0, interval_s=0.001)
        source.subscribe(lambda energy, now: ticks.append(energy))
        source.start()
        assert source.is_running
        await asyncio.sleep(0.02)
        await source.stop()
        assert not source.is_running

    asyncio.run(run())
    assert ticks
    assert all(t == 0.2 for t in ticks)


def test_closing_session_stops_polling_and_cancels_overlay():
    completed = []

    async def run():
        source = PollingEnergySource(lambda: 0.5, lambda: 0.0, interval_s=0.001)
        session = VadSession(VoiceActivityDetector(), source)
        overlay = ReciteOverlayController(tokenize_passage("qul huwa"), completed.append)
        session.attach_overlay(overlay)

        overlay.start(0)
        session.start(0)
        source.start()
        await asyncio.sleep(0.01)

        await session.close()
        await asyncio.sleep(0.01)
        return source, overlay

    source, overlay = asyncio.run(run())
    assert not source.is_running
    assert source._subscribers == []
    assert not overlay.is_active
    assert overlay.poll(10_000) is None
    assert completed == []
