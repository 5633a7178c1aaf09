from typing import Any, List, Optional

from pydantic import BaseModel, Field

from lingoclass.models import QuestionType


class QuestionForm(BaseModel):
    question_type: QuestionType
    prompt: str
    options: Optional[List[str]] = None
    correct_answer: Any = None
    points: float = Field(default=1.0, gt=0)
    case_sensitive: bool = False
    partial_credit: bool = False
    explanation: Optional[str] = None


class ExamForm(BaseModel):
    title: str
    description: Optional[str] = None
    instructions: Optional[str] = None
    time_limit_minutes: Optional[int] = Field(default=None, gt=0)
    passing_score: float = Field(default=70.0, ge=0, le=100)
    max_attempts: int = Field(default=3, ge=1)
    is_published: bool = False
    questions: List[QuestionForm] = []


class AnswerForm(BaseModel):
    question_id: int
    answer: Any = None


class ReviewForm(BaseModel):
    points_earned: float = Field(ge=0)
    feedback: Optional[str] = None
