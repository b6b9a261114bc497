import json
from pathlib import Path

import pytest

from formflow.navigation.loader import FormLoadError, build_form_definition, load_form_definition

PLAYGROUND_FORM = Path(__file__).resolve().parents[2] / "playground" / "demo_form.json"


@pytest.mark.unit
def test_playground_form_loads():
    form = load_form_definition(PLAYGROUND_FORM)

    assert form.slug == "demo-health-survey"
    assert [q.uid for q in form.questions_by_order()][:2] == ["age", "overall_health"]
    assert form.question_by_uid("age").type == "numeric_scale"
    assert form.question_by_uid("habits").choice_values() == ["exercise", "meditation", "sleep"]
    assert "high_risk" in form.exit_map


@pytest.mark.unit
def test_flat_question_choices_are_attached():
    form = build_form_definition(
        {
            "id": "f1",
            "questions": [
                {"id": "q1", "uid": "color", "type": "single_choice", "order": 1},
                {"id": "q2", "uid": "name", "type": "short_text", "order": 2},
            ],
            "question_choices": [
                {"question_id": "q1", "label": "Blue", "value": "blue", "order": 2},
                {"question_id": "q1", "label": "Red", "value": "red", "order": 1},
            ],
        }
    )

    assert form.question_by_id("q1").choice_values() == ["red", "blue"]
    assert form.question_by_id("q2").choices == []


@pytest.mark.unit
def test_archived_questions_are_dropped():
    form = build_form_definition(
        {
            "id": "f1",
            "questions": [
                {"id": "q1", "uid": "a", "type": "short_text", "order": 1},
                {"id": "q2", "uid": "b", "type": "short_text", "order": 2, "archived": True},
            ],
        }
    )
    assert [q.id for q in form.questions] == ["q1"]


@pytest.mark.unit
def test_numeric_ids_are_coerced_to_strings():
    form = build_form_definition(
        {
            "id": 10,
            "questions": [{"id": 1, "uid": "a", "type": "nps", "order": 1}],
            "branching_rules": [{"id": 5, "question_id": 1, "operator": "gt", "value": 8, "exit_key": "x"}],
        }
    )
    assert form.id == "10"
    assert form.questions[0].id == "1"
    assert form.branching_rules[0].question_id == "1"


@pytest.mark.unit
def test_dangling_rules_are_loaded_with_a_warning(caplog: pytest.LogCaptureFixture):
    form = build_form_definition(
        {
            "id": "f1",
            "questions": [{"id": "q1", "uid": "a", "type": "short_text"}],
            "branching_rules": [{"id": "r1", "question_id": "q1", "operator": "eq", "target_question_id": "gone"}],
        }
    )
    assert len(form.branching_rules) == 1
    assert "targets unknown question gone" in caplog.text


@pytest.mark.unit
def test_invalid_question_type_raises_form_load_error():
    with pytest.raises(FormLoadError):
        build_form_definition({"id": "f1", "questions": [{"id": "q1", "uid": "a", "type": "matrix"}]})


@pytest.mark.unit
def test_non_object_payload_raises_form_load_error():
    with pytest.raises(FormLoadError):
        build_form_definition(["not", "a", "form"])  # type: ignore[arg-type]


@pytest.mark.unit
def test_unreadable_files_raise_form_load_error(tmp_path: Path):
    with pytest.raises(FormLoadError):
        load_form_definition(tmp_path / "missing.json")

    broken = tmp_path / "broken.json"
    broken.write_text("{ not json", encoding="utf-8")
    with pytest.raises(FormLoadError):
        load_form_definition(broken)


@pytest.mark.unit
def test_load_form_definition_round_trips_a_written_file(tmp_path: Path):
    path = tmp_path / "form.json"
    path.write_text(
        json.dumps({"id": "f1", "title": "T", "questions": [{"id": "q1", "uid": "a", "type": "long_text"}]}),
        encoding="utf-8",
    )
    form = load_form_definition(path)
    assert form.title == "T"
    assert form.questions[0].type == "long_text"
