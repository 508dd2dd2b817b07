import pytest

from quran_hifz.connect import (
    FullRecitationTracker,
    TransitionTracker,
    build_transition_pairs,
)
from quran_hifz.text_mode import IKHLAS_TRANSLITERATED


def test_transition_pairs():
    pairs = build_transition_pairs(IKHLAS_TRANSLITERATED)
    assert len(pairs) == 3

    assert pairs[0].label == "1 -> 2"
    assert pairs[0].prompt == "huwa allahu ahad"
    assert pairs[0].target == "allahu assamad"

    assert pairs[1].prompt == "allahu assamad"
    assert pairs[1].target == "lam yalid wa"
    assert pairs[2].prompt == "wa lam yulad"


def test_transition_pairs_with_labels():
    pairs = build_transition_pairs(IKHLAS_TRANSLITERATED[:2], labels=["112:1", "112:2"])
    assert [p.label for p in pairs] == ["112:1 -> 112:2"]


def test_transition_pairs_label_mismatch():
    with pytest.raises(ValueError):
        build_transition_pairs(IKHLAS_TRANSLITERATED, labels=["1"])


def test_single_ayah_has_no_transitions():
    assert build_transition_pairs(IKHLAS_TRANSLITERATED[:1]) == []


def test_transition_needs_two_perfect_attempts():
    tracker = TransitionTracker.from_ayat(IKHLAS_TRANSLITERATED)

    first = tracker.record("allahu assamad")
    assert first.is_perfect
    assert not first.item.completed
    assert tracker.current_index == 0

    miss = tracker.record("allahu")
    assert not miss.is_perfect
    assert miss.word_accuracy == 0.5

    tracker.record("allahu assamad")
    assert tracker.current_index == 1
    assert tracker.items[0].completed
    assert tracker.overall_progress == pytest.approx(100 / 3)


def test_full_recitation_walks_every_ayah():
    tracker = FullRecitationTracker.from_ayat(IKHLAS_TRANSLITERATED)
    assert tracker.current.prompt == ""

    for ayah in IKHLAS_TRANSLITERATED:
        tracker.record(ayah)
        tracker.record(ayah)

    assert tracker.is_complete
    assert tracker.current is None
    assert tracker.overall_progress == 100.0
    with pytest.raises(IndexError):
        tracker.record("qul")


def test_record_reports_mistakes():
    tracker = FullRecitationTracker.from_ayat(IKHLAS_TRANSLITERATED)
    result = tracker.record("qul huwa")
    assert not result.is_perfect
    assert 'Missing word: "allahu"' in result.report.mistakes
    assert tracker.current.last_accuracy == 0.5
