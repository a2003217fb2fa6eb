from .types import QuestionType, MANUAL_REVIEW_TYPES, is_auto_gradable
from .base import GradingResult, QuestionDefinition, QuestionGrader
from .engine import GradingEngine
from .factory import get_grading_engine
from . import codec

__all__ = [
    'QuestionType', 'MANUAL_REVIEW_TYPES', 'is_auto_gradable',
    'GradingResult', 'QuestionDefinition', 'QuestionGrader',
    'GradingEngine', 'get_grading_engine', 'codec'
]
