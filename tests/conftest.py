# tests/conftest.py
import pytest
from fastapi.testclient import TestClient

from quran_hifz.config import EngineConfig
from quran_hifz.hifz_typing import Token
from quran_hifz.service import create_app
from quran_hifz.text_mode import tokenize_passage

EIGHT_WORD_AYAH = "qul huwa rabb ahad nasi samu lam yald"


def make_tokens(words, duration_ms=400):
    """Tokens with a fixed expected duration, for timing tests."""
    return tuple(
        Token(text=w, index=i, length=len(w), expected_duration_ms=duration_ms, normalized=w)
        for i, w in enumerate(words)
    )


@pytest.fixture()
def config():
    return EngineConfig()


@pytest.fixture()
def ikhlas_tokens():
    return tokenize_passage("qul huwa allahu ahad")


@pytest.fixture()
def eight_word_tokens():
    return tokenize_passage(EIGHT_WORD_AYAH)


@pytest.fixture()
def app_client():
    client = TestClient(create_app())
    yield client
