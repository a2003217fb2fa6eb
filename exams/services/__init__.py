from .attempts import AttemptService
from .proctoring import ProctoringAggregator, ViolationType, violation_severity
from .grades import GradeReportService, letter_grade, final_grade

__all__ = [
    'AttemptService', 'ProctoringAggregator', 'ViolationType',
    'violation_severity', 'GradeReportService', 'letter_grade', 'final_grade'
]
