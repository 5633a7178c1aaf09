"""Automatic grading of exam answers."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from lingoclass.models import AUTO_GRADABLE, ExamQuestion, QuestionType

PARTIAL_CREDIT_SIMILARITY = 0.7
PARTIAL_CREDIT_RATIO = 0.5

_WS_RE = re.compile(r"\s+")


@dataclass
class GradeResult:
    is_correct: bool | None
    points_earned: float
    needs_review: bool = False


def normalize_answer(value: Any, case_sensitive: bool = False) -> str:
    text = _WS_RE.sub(" ", str(value if value is not None else "").strip())
    return text if case_sensitive else text.lower()


def levenshtein_distance(s1: str, s2: str) -> int:
    if len(s1) < len(s2):
        return levenshtein_distance(s2, s1)
    if not s2:
        return len(s1)

    previous_row = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row
    return previous_row[-1]


def similarity(s1: str, s2: str) -> float:
    """1.0 for identical strings, falling towards 0.0 with edit distance."""
    longest = max(len(s1), len(s2))
    if longest == 0:
        return 1.0
    return (longest - levenshtein_distance(s1, s2)) / longest


def accepted_answers(question: ExamQuestion) -> list[str]:
    correct = question.correct_answer
    if correct is None:
        return []
    if isinstance(correct, (list, tuple)):
        return [str(c) for c in correct]
    return [str(correct)]


def grade_answer(question: ExamQuestion, answer: Any) -> GradeResult:
    """
    Grade one answer against its question.

    Multiple choice compares the chosen option exactly, true/false ignores
    case. Short answers and fill-in-the-blank accept any of the listed
    answers after whitespace (and, unless case sensitive, case)
    normalisation; with partial credit enabled, a near miss earns half the
    points. Essays are left for a teacher to review.
    """
    if question.question_type not in AUTO_GRADABLE:
        return GradeResult(is_correct=None, points_earned=0.0, needs_review=True)

    accepted = accepted_answers(question)
    if answer is None or not accepted:
        return GradeResult(is_correct=False, points_earned=0.0)

    if question.question_type == QuestionType.MULTIPLE_CHOICE:
        correct = str(answer).strip() in {a.strip() for a in accepted}
    elif question.question_type == QuestionType.TRUE_FALSE:
        correct = normalize_answer(answer) in {normalize_answer(a) for a in accepted}
    else:
        given = normalize_answer(answer, question.case_sensitive)
        normalized = [normalize_answer(a, question.case_sensitive) for a in accepted]
        if given in normalized:
            correct = True
        else:
            if question.partial_credit and given:
                best = max(similarity(given, a) for a in normalized)
                if best > PARTIAL_CREDIT_SIMILARITY:
                    return GradeResult(is_correct=False, points_earned=question.points * PARTIAL_CREDIT_RATIO)
            correct = False

    return GradeResult(is_correct=correct, points_earned=question.points if correct else 0.0)
