from ralphloop.budget import BudgetStatus, ContextAccess, ContextBudgetTracker, byte_heuristic
from ralphloop.config_loader import ContextConfig
from ralphloop.workspace import Journal


def _tracker(tmp_path, session="s1", **kwargs) -> ContextBudgetTracker:
    journal = Journal(tmp_path / "context.jsonl", ContextAccess)
    return ContextBudgetTracker(journal, session, **kwargs)


def test_byte_heuristic():
    assert byte_heuristic(0) == 0
    assert byte_heuristic(7) == 1
    assert byte_heuristic(4000) == 1000


def test_thresholds_from_capacity():
    cfg = ContextConfig(capacity=80_000)
    assert cfg.warn_threshold == 64_000
    assert cfg.critical_threshold == 76_000


def test_allocated_is_sum_of_estimates_and_monotonic(tmp_path):
    tracker = _tracker(tmp_path)
    sizes = [400, 0, 1200, 37, 8000]
    previous = 0
    for i, size in enumerate(sizes):
        result = tracker.record_read(f"file{i}.py", size=size)
        assert result.snapshot.allocated_tokens >= previous
        previous = result.snapshot.allocated_tokens

    assert tracker.snapshot().allocated_tokens == sum(s // 4 for s in sizes)
    assert tracker.snapshot().access_count == len(sizes)


def test_content_wins_over_size(tmp_path):
    tracker = _tracker(tmp_path)
    entry = tracker.record_read("a.py", content="x" * 40, size=99999).entry
    assert entry.estimated_tokens == 10


def test_falls_back_to_file_size_then_default(tmp_path):
    target = tmp_path / "big.txt"
    target.write_text("y" * 800)
    tracker = _tracker(tmp_path, config=ContextConfig(default_read_estimate=100))

    assert tracker.record_read(str(target)).entry.estimated_tokens == 200
    assert tracker.record_read(str(tmp_path / "missing.txt")).entry.estimated_tokens == 100


def test_status_bands(tmp_path):
    tracker = _tracker(tmp_path, config=ContextConfig(capacity=1000))
    assert tracker.classify(0) is BudgetStatus.HEALTHY
    assert tracker.classify(799) is BudgetStatus.HEALTHY
    assert tracker.classify(800) is BudgetStatus.WARNING
    assert tracker.classify(949) is BudgetStatus.WARNING
    assert tracker.classify(950) is BudgetStatus.CRITICAL


def test_critical_read_still_recorded_and_flags_wrap_up(tmp_path):
    tracker = _tracker(tmp_path, config=ContextConfig(capacity=1000))
    assert not tracker.record_read("a", size=3000).wrap_up   # 750
    result = tracker.record_read("b", size=1000)              # 1000
    assert result.wrap_up
    assert result.snapshot.status is BudgetStatus.CRITICAL
    assert result.snapshot.allocated_tokens == 1000


def test_estimator_is_swappable(tmp_path):
    tracker = _tracker(tmp_path, estimator=lambda n: n)
    assert tracker.record_read("a", size=123).entry.estimated_tokens == 123


def test_budget_is_scoped_to_session(tmp_path):
    old = _tracker(tmp_path, session="old")
    old.record_read("a", size=4000)

    fresh = _tracker(tmp_path, session="new")
    assert fresh.snapshot().allocated_tokens == 0
    assert old.snapshot().allocated_tokens == 1000


def test_malformed_journal_lines_are_skipped(tmp_path):
    tracker = _tracker(tmp_path)
    tracker.record_read("a", size=40)
    with open(tmp_path / "context.jsonl", "a") as f:
        f.write("not json\n{\"session_id\": \"s1\"}\n")
    tracker.record_read("b", size=40)
    assert tracker.snapshot().allocated_tokens == 20
