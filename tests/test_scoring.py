from bp_models import BloodPressureReading
from bp_scoring import make_candidate, score_candidate


def test_labels_and_slash_pair_earn_bonuses():
    reading = BloodPressureReading(systolic=138, diastolic=75)
    assert score_candidate(reading, "SYS 138/75 mmHg") == 100 + 20 + 15


def test_inverted_pair_loses_twenty():
    # 100/100 is inside both ranges; the zero gap also misses the difference range.
    assert score_candidate(BloodPressureReading(100, 100), "") == 100 - 20 - 10


def test_out_of_range_penalties_are_not_clamped():
    assert score_candidate(BloodPressureReading(250, 40), "") == 100 - 30 - 30 - 10


def test_pulse_bonus_requires_plausible_pulse():
    assert score_candidate(BloodPressureReading(120, 80, 72), "") == 110
    assert score_candidate(BloodPressureReading(120, 80, 200), "") == 100


def test_label_match_is_case_insensitive():
    assert score_candidate(BloodPressureReading(120, 80), "sys 120 dia 80") == 120


def test_missing_reading_scores_zero():
    assert score_candidate(None, "SYS 120/80 mmHg") == 0


def test_make_candidate_records_strategy():
    candidate = make_candidate(BloodPressureReading(120, 80), "120/80", "standard")
    assert candidate.score == 115
    assert candidate.strategy_id == "standard"
    assert candidate.raw_text == "120/80"
