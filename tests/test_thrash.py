import pytest

from ralphloop.config_loader import ThrashConfig
from ralphloop.failures import FailureEntry, FailureLog, FailurePattern, GutterRisk
from ralphloop.thrash import ChangeType, EditRecord, EditThrashDetector, classify_change
from ralphloop.workspace import Journal


def _detector(tmp_path, session="s1") -> EditThrashDetector:
    failures = FailureLog(Journal(tmp_path / "failures.jsonl", FailureEntry), session)
    return EditThrashDetector(Journal(tmp_path / "edits.jsonl", EditRecord), failures, session, ThrashConfig())


@pytest.mark.parametrize(
    "old_total,new_total,expected",
    [
        (0, 12, (12, ChangeType.ADDED)),
        (30, 10, (20, ChangeType.REMOVED)),
        (8, 8, (8, ChangeType.MODIFIED)),
        (0, 0, (0, ChangeType.NO_CHANGE)),
    ],
)
def test_classify_change(old_total, new_total, expected):
    assert classify_change(old_total, new_total) == expected


def test_edit_record_sums_spans(tmp_path):
    outcome = _detector(tmp_path).record_edit("src/a.py", [("abc", "abcdef"), ("", "xy")], iteration=1)
    assert outcome.record.change_type is ChangeType.ADDED
    assert outcome.record.chars == 5
    assert outcome.edit_count == 1


def test_sixth_edit_of_same_file_is_thrashing(tmp_path):
    detector = _detector(tmp_path)
    for _ in range(5):
        outcome = detector.record_edit("src/a.py", [("a", "b")], iteration=2)
        assert not outcome.thrashing
    assert detector.failures.thrash_count() == 0

    outcome = detector.record_edit("src/a.py", [("a", "b")], iteration=2)
    assert outcome.thrashing
    assert outcome.edit_count == 6
    records = detector.failures.records(FailurePattern.FILE_THRASHING)
    assert len(records) == 1
    assert records[0].subject == "src/a.py"
    assert records[0].occurrence_count == 6
    assert records[0].iteration == 2


def test_edits_to_other_files_do_not_count(tmp_path):
    detector = _detector(tmp_path)
    for i in range(10):
        outcome = detector.record_edit(f"src/file{i}.py", [("", "x")], iteration=1)
    assert not outcome.thrashing
    assert detector.failures.thrash_count() == 0


def test_gutter_risk_escalates_on_third_detection(tmp_path):
    detector = _detector(tmp_path)
    for _ in range(7):
        detector.record_edit("a.py", [("", "x")], iteration=1)
    # edits 6 and 7 were both detections
    assert detector.failures.thrash_count() == 2
    assert detector.gutter_risk() is GutterRisk.LOW

    outcome = detector.record_edit("a.py", [("", "x")], iteration=1)
    assert detector.failures.thrash_count() == 3
    assert outcome.gutter_risk is GutterRisk.HIGH


def test_new_session_starts_clean(tmp_path):
    detector = _detector(tmp_path, session="old")
    for _ in range(8):
        detector.record_edit("a.py", [("", "x")], iteration=1)
    assert detector.gutter_risk() is GutterRisk.HIGH

    fresh = _detector(tmp_path, session="new")
    assert fresh.gutter_risk() is GutterRisk.LOW
    assert fresh.edit_count("a.py") == 0
