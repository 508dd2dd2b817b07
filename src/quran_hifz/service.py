"""
Quran Hifz - HTTP adapter

Exposes the engine over a small REST API:
- passage segmentation
- transcript assessment
- in-memory learn sessions driven attempt by attempt

Sessions live in memory only; persistence belongs to the caller.
"""

from dataclasses import asdict
import logging
import uuid
from typing import Literal

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .config import BASELINE_MS_PER_WORD, EngineConfig
from .errors import (
    AttemptInProgressError,
    MalformedTargetError,
    NoActiveAttemptError,
    RoutineFinishedError,
)
from .hifz_typing import PhaseType, SegmentTarget, Target, WholePassageTarget, WindowTarget
from .learn_routine import AttemptCompleted, LearnRoutineRunner
from .recognition import RecognitionResult, assess_recitation
from .segmenter import segment_passage
from .text_mode import IKHLAS_AYAT, IKHLAS_TRANSLITERATED, passage_words, tokenize_passage

logger = logging.getLogger(__name__)


# =============================================================================
# Request Models
# =============================================================================

class SegmentRequest(BaseModel):
    text: str
    baseline_ms_per_word: int = Field(BASELINE_MS_PER_WORD, gt=0)


class AssessRequest(BaseModel):
    transcript: str
    expected: str
    alternatives: list[str] = []
    phase: PhaseType = PhaseType.CUMULATIVE


class SessionRequest(BaseModel):
    text: str
    config: dict = {}


class TargetBody(BaseModel):
    kind: Literal["segment", "window", "ayah"]
    idx: int | None = None
    left: int | None = None
    right: int | None = None

    def to_target(self) -> Target:
        if self.kind == "ayah":
            return WholePassageTarget()
        if self.kind == "segment":
            if self.idx is None:
                raise HTTPException(status_code=422, detail="Segment target needs `idx`")
            return SegmentTarget(self.idx)
        if self.left is None or self.right is None:
            raise HTTPException(status_code=422, detail="Window target needs `left` and `right`")
        return WindowTarget(self.left, self.right)


class StartAttemptRequest(BaseModel):
    target: TargetBody | None = None


class CompleteAttemptRequest(BaseModel):
    elapsed_ms: float = Field(..., ge=0)
    hesitations: int = Field(0, ge=0)
    used_hint: bool = False
    coverage: float = Field(1.0, ge=0, le=1)
    transcript: str | None = None
    alternatives: list[str] = []


# =============================================================================
# Serialization
# =============================================================================

def _effect_to_dict(effect) -> dict:
    return {"type": type(effect).__name__, **asdict(effect)}


def _session_to_dict(session_id: str, runner: LearnRoutineRunner) -> dict:
    return {
        "session_id": session_id,
        "status": runner.status.value,
        "phase": asdict(runner.current_phase),
        "next_target": asdict(runner.next_target) if runner.next_target is not None else None,
        "attempt_count": runner.attempt_count,
        "ayah_mastered": runner.ayah_mastered,
        "needs_extra_practice": runner.needs_extra_practice,
        "segments": [
            {"start": s.start_token_idx, "end": s.end_token_idx, "text": " ".join(passage_words(s.tokens))}
            for s in runner.segmentation.segments
        ],
    }


def _segmentation_to_dict(tokens, segmentation) -> dict:
    return {
        "tokens": [asdict(t) for t in tokens],
        "segments": [
            {
                "start": s.start_token_idx,
                "end": s.end_token_idx,
                "text": " ".join(passage_words(s.tokens)),
                "estimated_duration_ms": s.estimated_duration_ms,
            }
            for s in segmentation.segments
        ],
        "super_segments": [list(group) for group in segmentation.super_segments],
    }


def _assessment_to_dict(assessment) -> dict:
    return {
        "transcript": assessment.transcript,
        "similarity": assessment.similarity,
        "word_accuracy": assessment.word_accuracy,
        "letter_accuracy": assessment.letter_accuracy,
        "quality": assessment.quality,
        "progress_increment": assessment.progress_increment,
        "passed_gate": assessment.passed_gate,
        "feedback": assessment.feedback,
        "mistakes": assessment.report.mistakes,
        "suggestions": assessment.report.suggestions,
        "correct_words": assessment.report.correct_words,
        "mistake_logs": [asdict(log) for log in assessment.report.logs],
        "letter_mistakes": assessment.letter_mistakes,
    }


# =============================================================================
# App
# =============================================================================

def create_app() -> FastAPI:
    app = FastAPI(
        title="Quran Hifz API",
        description="Recitation assessment and progressive mastery engine",
        version="0.1.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    sessions: dict[str, LearnRoutineRunner] = {}
    app.state.sessions = sessions

    def get_runner(session_id: str) -> LearnRoutineRunner:
        runner = sessions.get(session_id)
        if runner is None:
            raise HTTPException(status_code=404, detail="Unknown session_id")
        return runner

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {"status": "ok", "message": "Quran Hifz API is running"}

    @app.get("/api/ikhlas")
    async def get_ikhlas():
        """Sample passage: Surah Al-Ikhlas, script and transliteration."""
        return {
            "ayat": IKHLAS_AYAT,
            "transliterated": IKHLAS_TRANSLITERATED,
            "count": len(IKHLAS_AYAT),
        }

    @app.post("/api/segment")
    async def segment(body: SegmentRequest):
        tokens = tokenize_passage(body.text, body.baseline_ms_per_word)
        return _segmentation_to_dict(tokens, segment_passage(tokens, body.baseline_ms_per_word))

    @app.post("/api/assess")
    async def assess(body: AssessRequest):
        result = RecognitionResult(body.transcript, tuple(body.alternatives))
        words = passage_words(tokenize_passage(body.expected))
        return _assessment_to_dict(assess_recitation(result, body.expected, words, body.phase))

    @app.post("/api/sessions")
    async def create_session(body: SessionRequest):
        try:
            config = EngineConfig.from_mapping(body.config)
        except (TypeError, ValueError) as e:
            raise HTTPException(status_code=422, detail=str(e))

        tokens = tokenize_passage(body.text, config.baseline_ms_per_word)
        if not tokens:
            raise HTTPException(status_code=422, detail="Passage has no words")

        session_id = str(uuid.uuid4())
        sessions[session_id] = LearnRoutineRunner(tokens, config)
        logger.info(f"Created learn session {session_id}: {len(tokens)} words")
        return _session_to_dict(session_id, sessions[session_id])

    @app.get("/api/sessions/{session_id}")
    async def get_session(session_id: str):
        return _session_to_dict(session_id, get_runner(session_id))

    @app.delete("/api/sessions/{session_id}")
    async def delete_session(session_id: str):
        get_runner(session_id)
        del sessions[session_id]
        logger.info(f"Deleted learn session {session_id}")
        return {"ok": True}

    @app.post("/api/sessions/{session_id}/attempts/start")
    async def start_attempt(session_id: str, body: StartAttemptRequest | None = None):
        runner = get_runner(session_id)
        target = body.target.to_target() if body is not None and body.target is not None else None
        try:
            target = runner.begin_attempt(target)
        except (AttemptInProgressError, RoutineFinishedError) as e:
            raise HTTPException(status_code=409, detail=str(e))
        except MalformedTargetError as e:
            raise HTTPException(status_code=422, detail=str(e))

        tokens = runner.target_tokens(target)
        return {
            "target": asdict(target),
            "text": " ".join(passage_words(tokens)),
            "words": [asdict(t) for t in tokens],
        }

    @app.post("/api/sessions/{session_id}/attempts/complete")
    async def complete_attempt(session_id: str, body: CompleteAttemptRequest):
        runner = get_runner(session_id)
        in_flight = runner.state.in_flight
        if in_flight is None:
            raise HTTPException(status_code=409, detail="No attempt in flight to complete")

        assessment = None
        if body.transcript is not None:
            tokens = runner.target_tokens(in_flight)
            words = passage_words(tokens)
            assessment = assess_recitation(
                RecognitionResult(body.transcript, tuple(body.alternatives)),
                " ".join(words),
                words,
                runner.current_phase.type,
            )

        try:
            effects = runner.dispatch(AttemptCompleted(
                elapsed_ms=body.elapsed_ms,
                hesitations=body.hesitations,
                used_hint=body.used_hint,
                coverage=body.coverage,
                assessment=assessment,
                ts=runner.clock(),
            ))
        except (NoActiveAttemptError, RoutineFinishedError) as e:
            raise HTTPException(status_code=409, detail=str(e))

        attempt = runner.state.last_attempt
        return {
            "grade": attempt.grade.value,
            "progress_increment": attempt.progress_increment,
            "assessment": _assessment_to_dict(assessment) if assessment is not None else None,
            "effects": [_effect_to_dict(e) for e in effects],
            "session": _session_to_dict(session_id, runner),
        }

    @app.post("/api/sessions/{session_id}/attempts/abort")
    async def abort_attempt(session_id: str):
        runner = get_runner(session_id)
        try:
            runner.abort_attempt()
        except NoActiveAttemptError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return _session_to_dict(session_id, runner)

    return app
