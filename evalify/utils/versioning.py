"""Versioned JSON envelopes for question payloads.

Question data and solutions are persisted as `{"version": n, "data": ...}`
so that the shape of a question type can evolve without rewriting old
rows. Readers should always go through `unwrap` which also accepts legacy
un-enveloped values.
"""

from typing import Any

from ..models import QuestionType

# current (data, solution) schema version per question type
QUESTION_VERSIONS = {
    QuestionType.MCQ: (1, 1),
    QuestionType.MMCQ: (1, 1),
    QuestionType.TRUE_FALSE: (1, 1),
    QuestionType.FILL_THE_BLANK: (1, 1),
    QuestionType.MATCHING: (1, 1),
    QuestionType.DESCRIPTIVE: (1, 1),
    QuestionType.CODING: (1, 1),
    QuestionType.FILE_UPLOAD: (1, 1),
}


def wrap(data: Any, version: int) -> dict:
    return {"version": version, "data": data}


def unwrap(value: Any) -> Any:
    """Return the payload of a versioned envelope, or `value` unchanged."""
    if isinstance(value, dict) and "version" in value and "data" in value:
        return value["data"]
    return value


def version_data(question_type: QuestionType, data: Any) -> dict:
    return wrap(data, QUESTION_VERSIONS[QuestionType(question_type)][0])


def version_solution(question_type: QuestionType, solution: Any) -> dict:
    return wrap(solution, QUESTION_VERSIONS[QuestionType(question_type)][1])
