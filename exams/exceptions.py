"""
Domain errors raised by the grading core.

Every error carries a ``context`` dict (attempt id, question id, ...) so the
API layer can render a useful message without re-deriving it.
"""


class ExamError(Exception):
    default_message = "Exam operation failed."

    def __init__(self, message=None, **context):
        self.message = message or self.default_message
        self.context = {k: v for k, v in context.items() if v is not None}
        super().__init__(self.message)

    def __str__(self):
        if not self.context:
            return self.message
        details = ', '.join(f"{k}={v}" for k, v in sorted(self.context.items()))
        return f"{self.message} ({details})"

    def as_dict(self):
        return {'detail': self.message, **self.context}


class MalformedAnswerError(ExamError):
    """A stored or submitted answer could not be decoded into its canonical shape."""
    default_message = "Answer is malformed."


class AttemptLimitExceeded(ExamError):
    default_message = "Maximum number of attempts reached."


class ExamNotAvailable(ExamError):
    default_message = "This exam is not available at this time."


class InvalidAttemptState(ExamError):
    default_message = "This attempt cannot be modified in its current state."


class QuestionNotInExam(ExamError):
    default_message = "Question does not belong to this exam."


class ScoreOutOfRange(ExamError):
    default_message = "Score must be between 0 and the question's maximum."
