import pytest

from ralphloop.task_spec import MissingTask, parse_task, read_task

TASK = """---
task: Build a CLI todo app
test_command: "npm test -- --ci"
max_iterations: 5
---
# Task

## Success Criteria

1. [ ] add command works
2. [x] list command works
- [X] done command works
* [~] persistence (partially, counts as checked)
- [ ] usage message

## Example Output

```
1. [ ] Buy milk
```
"""


def test_parses_preamble():
    spec = parse_task(TASK)
    assert spec.title == "Build a CLI todo app"
    assert spec.test_command == "npm test -- --ci"
    assert spec.max_iterations == 5


def test_only_blank_box_counts_as_unchecked():
    spec = parse_task(TASK)
    assert len(spec.criteria) == 5
    assert spec.unchecked_count == 2
    assert spec.checked_count == 3
    assert not spec.all_checked
    assert [c.text for c in spec.criteria if not c.checked] == ["add command works", "usage message"]


def test_fenced_examples_are_not_criteria():
    spec = parse_task(TASK)
    assert all("Buy milk" not in c.text for c in spec.criteria)


def test_missing_preamble_defaults():
    spec = parse_task("# Task\n\n- [x] one\n- [x] two\n")
    assert spec.test_command is None
    assert spec.max_iterations == 0
    assert spec.all_checked


def test_malformed_max_iterations_is_unbounded():
    spec = parse_task("---\nmax_iterations: lots\n---\n- [ ] a\n")
    assert spec.max_iterations == 0
    assert spec.unchecked_count == 1


def test_negative_max_iterations_clamped():
    assert parse_task("---\nmax_iterations: -3\n---\n").max_iterations == 0


def test_blank_test_command_is_none():
    assert parse_task("---\ntest_command: '  '\n---\n- [ ] a\n").test_command is None


def test_missing_task_raises(tmp_path):
    with pytest.raises(MissingTask):
        read_task(tmp_path / "RALPH_TASK.md")


def test_read_task_from_disk(tmp_path):
    path = tmp_path / "RALPH_TASK.md"
    path.write_text(TASK)
    assert read_task(path).unchecked_count == 2


def test_colon_in_unquoted_command_falls_back_to_line_reading():
    text = (
        "---\n"
        "task: Fix it\n"
        "test_command: python -c \"print('status: failed'); raise SystemExit(1)\"\n"
        "max_iterations: 4\n"
        "---\n"
        "- [x] done\n"
    )
    spec = parse_task(text)
    assert spec.test_command == "python -c \"print('status: failed'); raise SystemExit(1)\""
    assert spec.max_iterations == 4
    assert spec.all_checked


def test_line_reading_strips_one_pair_of_quotes():
    text = "---\ntest_command: \"make test: all\"\nmax_iterations: '3'\nbad: [\n---\n"
    spec = parse_task(text)
    assert spec.test_command == "make test: all"
    assert spec.max_iterations == 3


@pytest.mark.parametrize("raw,expected", [("5.0", 5), ("'7.9'", 7), ("true", 0), (".inf", 0)])
def test_max_iterations_numeric_forms(raw, expected):
    assert parse_task(f"---\nmax_iterations: {raw}\n---\n").max_iterations == expected
