from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Tuple


@dataclass
class QuestionDefinition:
    """Canonical view of a question as placed in an exam."""
    question_id: Optional[int]
    question_type: str
    max_score: Decimal
    options: Any = None
    key: Any = None
    key_error: str = ''


@dataclass
class GradingResult:
    score: Optional[Decimal]
    max_score: Decimal
    requires_manual_review: bool = False
    feedback: str = ''
    error: str = ''
    grading_method: str = 'auto'

    @property
    def percentage(self) -> Optional[float]:
        if self.score is None:
            return None
        if not self.max_score:
            return 0.0
        return float(self.score / self.max_score * 100)

    @property
    def is_correct(self) -> Optional[bool]:
        if self.score is None:
            return None
        return self.score == self.max_score


class QuestionGrader(ABC):
    """Scores one auto-gradable question type as (correct parts, total parts)."""

    @abstractmethod
    def count(self, definition: QuestionDefinition, response) -> Tuple[int, int]:
        pass

    def feedback(self, correct: int, total: int) -> str:
        if total and correct == total:
            return "Correct!"
        if correct == 0:
            return "Incorrect."
        return f"Partially correct: {correct} of {total}."
