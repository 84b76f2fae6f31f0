import json

import pytest

from essaycoach.domain.errors import ResponseParseError
from essaycoach.domain.models import CRITIQUE_PLACEHOLDER, Annotation, AnnotationType, ExamType
from essaycoach.domain.response_parsing import (
    extract_json,
    normalize_score,
    parse_annotation_response,
    parse_example_essay_response,
    parse_feedback_response,
)


@pytest.mark.unit
def test_json_is_found_inside_prose_and_fences() -> None:
    assert extract_json('Sure! Here it is: {"a": 1} Hope this helps.') == {"a": 1}
    assert extract_json('```json\n{"b": [1, 2]}\n```') == {"b": [1, 2]}
    assert extract_json("notes first\n[1, 2, 3]") == [1, 2, 3]
    assert extract_json("no json at all") is None
    assert extract_json("") is None


@pytest.mark.unit
def test_scores_are_coerced_and_clamped() -> None:
    assert normalize_score("6.5 points") == 6.5
    assert normalize_score(11) == 9.0
    assert normalize_score(-2) == 0.0
    assert normalize_score(None) == 0.0
    assert normalize_score(True) == 0.0
    assert normalize_score(28, exam_type=ExamType.TOEFL) == 28.0
    assert normalize_score(8, exam_type=ExamType.GRE) == 6.0


@pytest.mark.unit
def test_negative_string_scores_clamp_to_the_floor() -> None:
    assert normalize_score("-1") == 0.0
    assert normalize_score("score: -3.5") == 0.0
    assert normalize_score("-1", exam_type=ExamType.TOEFL) == 0.0


@pytest.mark.unit
def test_feedback_reply_with_prose_and_string_scores() -> None:
    reply = (
        "Here is my assessment:\n```json\n"
        + json.dumps(
            {
                "scoreTR": "7",
                "scoreCC": 6.5,
                "score_lr": "6.5 points",
                "scoreGRA": 6,
                "feedbackTR": "Clear position throughout.",
                "overallFeedback": "Solid essay overall.",
            }
        )
        + "\n```"
    )

    result = parse_feedback_response(reply)

    assert result.scores.as_tuple() == (7.0, 6.5, 6.5, 6.0)
    assert result.critiques.task_response == "Clear position throughout."
    assert result.critiques.coherence_cohesion == CRITIQUE_PLACEHOLDER
    assert result.critiques.overall == "Solid essay overall."


@pytest.mark.unit
def test_feedback_reply_inside_result_envelope() -> None:
    reply = json.dumps({"result": {"scoreTR": 5, "scoreCC": 5, "scoreLR": 5, "scoreGRA": 5}})
    assert parse_feedback_response(reply).scores.as_tuple() == (5.0, 5.0, 5.0, 5.0)


@pytest.mark.unit
def test_feedback_reply_without_object_is_rejected() -> None:
    with pytest.raises(ResponseParseError):
        parse_feedback_response("I cannot grade this essay.")


@pytest.mark.unit
@pytest.mark.parametrize(
    "reply",
    [
        '[{"type": "correction", "original_content": "He go", "correction_content": "He goes", "suggestion": "agreement"}]',
        '{"annotations": [{"type": "correction", "original_content": "He go", "correction_content": "He goes", "suggestion": "agreement"}]}',
        '{"result": {"annotations": [{"type": "correction", "original_content": "He go", "correction_content": "He goes", "suggestion": "agreement"}]}}',
    ],
)
def test_annotation_envelopes_are_unwrapped(reply: str) -> None:
    annotations = parse_annotation_response(reply, paragraph_index=2)

    assert len(annotations) == 1
    assert annotations[0].type == AnnotationType.CORRECTION
    assert annotations[0].correction_content == "He goes"
    assert annotations[0].paragraph_index == 2


@pytest.mark.unit
def test_annotation_items_are_normalized() -> None:
    reply = json.dumps(
        [
            {"type": "nitpick", "original_content": "very good", "suggestion": "be precise"},
            {"type": "highlight", "original_content": "", "suggestion": ""},
            "not an object",
        ]
    )

    annotations = parse_annotation_response(reply, paragraph_index=0)

    assert [item.type for item in annotations] == [AnnotationType.SUGGESTION]
    assert annotations[0].is_anchored("It was very good indeed.")
    assert not annotations[0].is_anchored("It was fine.")


@pytest.mark.unit
def test_annotation_reply_without_array_is_rejected() -> None:
    with pytest.raises(ResponseParseError):
        parse_annotation_response('{"notes": "nothing"}', paragraph_index=0)


@pytest.mark.unit
def test_camel_case_annotation_fields_are_read() -> None:
    reply = json.dumps(
        [
            {
                "type": "correction",
                "originalContent": "he go to school",
                "correctionContent": "he goes to school",
                "suggestion": "Subject-verb agreement.",
            }
        ]
    )

    annotations = parse_annotation_response(reply, paragraph_index=1)

    assert len(annotations) == 1
    assert annotations[0].type == AnnotationType.CORRECTION
    assert annotations[0].original_content == "he go to school"
    assert annotations[0].correction_content == "he goes to school"
    assert annotations[0].paragraph_index == 1
    assert annotations[0].is_anchored("Every day he go to school by bus.")
    restored = Annotation.from_dict({"originalContent": "x", "correctionContent": "y", "paragraphIndex": 3})
    assert (restored.original_content, restored.correction_content, restored.paragraph_index) == ("x", "y", 3)


@pytest.mark.unit
def test_example_essay_reply_variants() -> None:
    essay, improvement = parse_example_essay_response(
        json.dumps({"exampleEssay": "Model text.", "improvement": "Add examples."})
    )
    assert (essay, improvement) == ("Model text.", "Add examples.")

    essay, improvement = parse_example_essay_response(json.dumps({"essay": ["Para one.", "Para two."]}))
    assert essay == "Para one.\nPara two."
    assert improvement is None

    essay, improvement = parse_example_essay_response("  Just a plain essay.  ")
    assert (essay, improvement) == ("Just a plain essay.", None)

    with pytest.raises(ResponseParseError):
        parse_example_essay_response("   ")
