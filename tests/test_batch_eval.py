import csv

import pytest

import bp_batch_eval
from bp_models import BloodPressureReading, RecognizerUnavailable, ScoredCandidate, UnrecognizableReading


def _touch(directory, *names):
    for name in names:
        (directory / name).write_bytes(b"x")


def test_list_images_filters_and_sorts(tmp_path):
    _touch(tmp_path, "b.JPG", "a.png", "notes.txt", "c.jpeg")
    assert [path.name for path in bp_batch_eval.list_images(tmp_path)] == ["a.png", "b.JPG", "c.jpeg"]


def test_evaluate_directory_continues_past_failures(tmp_path, monkeypatch):
    _touch(tmp_path, "good.png", "bad.png")

    def fake_read(path, recognizer):
        if path.name == "bad.png":
            raise UnrecognizableReading("no strategy validated")
        return ScoredCandidate(BloodPressureReading(128, 84, 66), "SYS 128\nDIA 84", 130, "standard")

    monkeypatch.setattr(bp_batch_eval, "read_blood_pressure", fake_read)
    output = tmp_path / "out" / "results.csv"

    counts = bp_batch_eval.evaluate_directory(bp_batch_eval.list_images(tmp_path), object(), output)

    assert counts == (1, 1)
    with output.open(newline="", encoding="utf-8") as handle:
        rows = list(csv.reader(handle))
    assert rows[0] == bp_batch_eval.CSV_COLUMNS
    assert rows[1] == ["bad.png", "", "", "", "", "", "", "no strategy validated"]
    assert rows[2] == ["good.png", "128", "84", "66", "130", "standard", "SYS 128 DIA 84", ""]


def test_unavailable_recognizer_aborts_the_batch(tmp_path, monkeypatch):
    _touch(tmp_path, "one.png")

    def fake_read(path, recognizer):
        raise RecognizerUnavailable("engine died")

    monkeypatch.setattr(bp_batch_eval, "read_blood_pressure", fake_read)
    with pytest.raises(RecognizerUnavailable):
        bp_batch_eval.evaluate_directory([tmp_path / "one.png"], object(), tmp_path / "r.csv")


def test_main_requires_images(tmp_path):
    with pytest.raises(SystemExit):
        bp_batch_eval.main(["--tests-dir", str(tmp_path)])
