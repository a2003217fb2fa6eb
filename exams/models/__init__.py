from .subject import Subject
from .user_profile import UserProfile
from .question import Question
from .exam import Exam, ExamQuestion, UNLIMITED_ATTEMPTS
from .submission import Submission
from .answer import Answer

__all__ = [
    'Subject', 'UserProfile', 'Question',
    'Exam', 'ExamQuestion', 'UNLIMITED_ATTEMPTS',
    'Submission', 'Answer'
]
