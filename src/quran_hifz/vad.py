"""
Voice Activity Detection Module

Energy-based voice activity detection turning a stream of normalized
amplitude samples into voiced segments with timing:
- per-tick voiced/silent classification against a noise gate
- segment open / extend / close with noise-spike rejection
- silence tracking (the caller decides when a session ends)
- energy source ports and an asyncio polling loop

Closed segments are immutable and only ever appended; the currently open
segment is private to the detector.
"""

from dataclasses import dataclass
import asyncio
import logging
from typing import Awaitable, Callable, Protocol

import numpy as np

from .config import NOISE_GATE_THRESHOLD, SILENCE_THRESHOLD_MS, VOICE_ONSET_MIN_MS
from .hifz_typing import VoiceSegment

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

BYTE_SPECTRUM_MAX = 255.0  # Byte frequency bins are in [0, 255]
DEFAULT_POLL_INTERVAL_S = 1 / 60  # Typical display refresh cadence
TICK_LOG_EVERY = 30  # Log every Nth tick at debug level


# =============================================================================
# ENERGY
# =============================================================================

def compute_rms_energy(audio: np.ndarray) -> float:
    """
    Compute RMS energy of audio signal.

    Args:
        audio: Audio samples (float PCM in [-1, 1])

    Returns:
        RMS energy value
    """
    if len(audio) == 0:
        return 0.0
    audio = np.asarray(audio, dtype=np.float64)
    return float(np.sqrt(np.mean(audio ** 2)))


def rms_from_frequency_bins(bins) -> float:
    """
    Normalized RMS of a byte frequency spectrum.

    Args:
        bins: Byte magnitudes, one per frequency bin

    Returns:
        RMS in [0, 1]
    """
    bins = np.asarray(bins, dtype=np.float64)
    if bins.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(bins ** 2)) / BYTE_SPECTRUM_MAX)


# =============================================================================
# EVENTS
# =============================================================================

@dataclass(frozen=True)
class VoiceStarted:
    ts: float


@dataclass(frozen=True)
class VoiceEnded:
    segment: VoiceSegment


@dataclass(frozen=True)
class NoiseDiscarded:
    """A voiced interval shorter than the onset minimum."""
    start_ts: float
    end_ts: float


VadEvent = VoiceStarted | VoiceEnded | NoiseDiscarded


# =============================================================================
# DETECTOR
# =============================================================================

class VoiceActivityDetector:
    """
    Per-tick state machine over normalized energy samples.

    Transitions:
        silent -> voiced: open a segment at `now`
        voiced -> voiced: extend the open segment, confidence = running max
        voiced -> silent: close the segment at the last voiced tick; keep it
            only if it lasted at least `voice_onset_min_ms`
        silent -> silent: nothing (see `silence_exceeded`)
    """

    def __init__(
        self,
        noise_gate_threshold: float = NOISE_GATE_THRESHOLD,
        voice_onset_min_ms: float = VOICE_ONSET_MIN_MS,
        silence_threshold_ms: float = SILENCE_THRESHOLD_MS,
    ):
        self.noise_gate_threshold = noise_gate_threshold
        self.voice_onset_min_ms = voice_onset_min_ms
        self.silence_threshold_ms = silence_threshold_ms

        self.is_listening = False
        self.is_voiced = False
        self._segments: list[VoiceSegment] = []
        self._open_start: float | None = None
        self._open_end: float | None = None
        self._open_confidence = 0.0
        self._silence_start: float | None = None
        self._ticks = 0

    @property
    def segments(self) -> tuple[VoiceSegment, ...]:
        """Closed segments of the current (or last) listening session."""
        return tuple(self._segments)

    @property
    def current_segment(self) -> VoiceSegment | None:
        """Snapshot of the open segment, if any."""
        if self._open_start is None:
            return None
        return VoiceSegment(self._open_start, self._open_end, self._open_confidence)

    def start(self, now: float) -> None:
        """Open a listening session; segments of the previous one are cleared."""
        self._segments = []
        self._reset_open()
        self.is_listening = True
        self.is_voiced = False
        self._silence_start = now
        self._ticks = 0
        logger.info(f"VAD session started at {now:.0f}ms "
                    f"(gate={self.noise_gate_threshold}, onset_min={self.voice_onset_min_ms}ms)")

    def stop(self) -> None:
        """
        Stop listening. The open segment is discarded; closed segments stay
        readable until the next `start`.
        """
        if self._open_start is not None:
            logger.debug(f"VAD stop: discarding open segment started at {self._open_start:.0f}ms")
        self._reset_open()
        self.is_listening = False
        self.is_voiced = False
        logger.info(f"VAD session stopped with {len(self._segments)} segments")

    def clear_segments(self) -> None:
        self._segments = []

    def _reset_open(self) -> None:
        self._open_start = None
        self._open_end = None
        self._open_confidence = 0.0

    def process_sample(self, energy: float, now: float) -> list:
        """
        Classify one energy sample and apply the resulting transition.

        Args:
            energy: Normalized energy in [0, 1]
            now: Tick timestamp in milliseconds

        Returns:
            List of VadEvent produced by this tick (possibly empty)
        """
        if not self.is_listening:
            return []

        self._ticks += 1
        voiced = energy > self.noise_gate_threshold
        events = []

        if voiced and not self.is_voiced:
            self._open_start = now
            self._open_end = now
            self._open_confidence = energy
            self.is_voiced = True
            events.append(VoiceStarted(now))

        elif voiced and self.is_voiced:
            self._open_end = now
            self._open_confidence = max(self._open_confidence, energy)

        elif not voiced and self.is_voiced:
            start, end = self._open_start, self._open_end
            if end - start < self.voice_onset_min_ms:
                logger.debug(f"VAD: discarding noise spike {start:.0f}-{end:.0f}ms")
                events.append(NoiseDiscarded(start, end))
            else:
                segment = VoiceSegment(start, end, self._open_confidence)
                self._segments.append(segment)
                events.append(VoiceEnded(segment))
            self._reset_open()
            self.is_voiced = False
            self._silence_start = end

        if self._ticks % TICK_LOG_EVERY == 0:
            logger.debug(f"VAD: energy={energy:.4f}, voiced={voiced}, segments={len(self._segments)}")

        return events

    def silence_duration(self, now: float) -> float:
        """Milliseconds of continuous silence, 0 while voiced."""
        if self.is_voiced or self._silence_start is None:
            return 0.0
        return max(0.0, now - self._silence_start)

    def silence_exceeded(self, now: float, threshold_ms: float | None = None) -> bool:
        """Whether silence has lasted longer than the threshold (caller decides what to do)."""
        if threshold_ms is None:
            threshold_ms = self.silence_threshold_ms
        return self.silence_duration(now) > threshold_ms

    def current_segment_duration(self, now: float) -> float:
        if self._open_start is None:
            return 0.0
        return now - self._open_start


# =============================================================================
# ENERGY SOURCE PORTS
# =============================================================================

EnergyCallback = Callable[[float, float], None]


class EnergySource(Protocol):
    """Anything delivering `(energy, now_ms)` samples to subscribers."""

    def subscribe(self, callback: EnergyCallback) -> Callable[[], None]:
        ...


class PollingEnergySource:
    """
    Polls a level reader on an asyncio loop and fans samples out to subscribers.

    Args:
        read_level: Callable returning the current normalized level (may be async)
        clock: Callable returning the current time in milliseconds
        interval_s: Polling interval in seconds
    """

    def __init__(
        self,
        read_level: Callable[[], float | Awaitable[float]],
        clock: Callable[[], float],
        interval_s: float = DEFAULT_POLL_INTERVAL_S,
    ):
        self.read_level = read_level
        self.clock = clock
        self.interval_s = interval_s
        self._subscribers: list[EnergyCallback] = []
        self._task: asyncio.Task | None = None

    def subscribe(self, callback: EnergyCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def poll_once(self) -> float:
        level = self.read_level()
        if asyncio.iscoroutine(level) or isinstance(level, asyncio.Future):
            level = await level
        now = self.clock()
        for callback in list(self._subscribers):
            callback(float(level), now)
        return float(level)

    async def _run(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self.interval_s)

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


class VadSession:
    """
    Binds a detector to an energy source and forwards events to listeners.

    Listeners receive each VadEvent after the detector state is fully
    updated for the tick.
    """

    def __init__(self, detector: VoiceActivityDetector, source: EnergySource):
        self.detector = detector
        self.source = source
        self.listeners: list[Callable[[object], None]] = []
        self.overlays: list = []
        self._unsubscribe: Callable[[], None] | None = None

    def add_listener(self, listener: Callable[[object], None]) -> None:
        self.listeners.append(listener)

    def attach_overlay(self, overlay) -> None:
        """Feed VAD events to a recite overlay; stopping the session cancels it."""
        self.overlays.append(overlay)
        self.add_listener(overlay.handle_vad_event)

    def _on_sample(self, energy: float, now: float) -> None:
        events = self.detector.process_sample(energy, now)
        for event in events:
            for listener in list(self.listeners):
                listener(event)

    def start(self, now: float) -> None:
        if self._unsubscribe is not None:
            return
        self.detector.start(now)
        self._unsubscribe = self.source.subscribe(self._on_sample)

    def stop(self) -> None:
        """
        Stop listening: unsubscribe, discard the open segment and cancel the
        pending timers of attached overlays. Closed segments are kept.
        """
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.detector.stop()
        for overlay in self.overlays:
            overlay.cancel()
        logger.info(f"VAD session stopped with {len(self.detector.segments)} segments")

    async def close(self) -> None:
        """Stop the session and the polling loop of its source, when it has one."""
        self.stop()
        stop_source = getattr(self.source, "stop", None)
        if stop_source is not None:
            result = stop_source()
            if asyncio.iscoroutine(result):
                await result

    @property
    def segments(self) -> tuple[VoiceSegment, ...]:
        return self.detector.segments
