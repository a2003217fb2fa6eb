from django.db import models


class QuestionType(models.TextChoices):
    MULTIPLE_CHOICE = 'multiple_choice', 'Multiple Choice'
    SHORT_ANSWER = 'short_answer', 'Short Answer'
    ESSAY = 'essay', 'Essay'
    FILL_BLANK = 'fill_blank', 'Fill in the Blank'
    MATCHING = 'matching', 'Matching'
    RANKING = 'ranking', 'Ranking'
    DRAG_DROP = 'drag_drop', 'Drag and Drop'
    STEM = 'stem', 'STEM (Math)'


MANUAL_REVIEW_TYPES = frozenset({
    QuestionType.SHORT_ANSWER,
    QuestionType.ESSAY,
    QuestionType.STEM,
})


def is_auto_gradable(question_type) -> bool:
    return question_type not in MANUAL_REVIEW_TYPES
