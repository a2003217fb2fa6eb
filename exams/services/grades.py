"""
Grade reporting.

Per-subject final grades are built from each student's highest-scoring
graded attempt of every exam and homework assignment in the subject.
"""
import logging
from collections import OrderedDict
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings

from exams.models import Exam, Submission

logger = logging.getLogger(__name__)

LETTER_GRADES = (
    ('A+', 97), ('A', 93), ('A-', 90),
    ('B+', 87), ('B', 83), ('B-', 80),
    ('C+', 77), ('C', 73), ('C-', 70),
    ('D+', 67), ('D', 63), ('D-', 60),
    ('F', 0),
)

TWO_PLACES = Decimal('0.01')


def _round(value) -> Decimal:
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def letter_grade(percentage) -> str:
    percentage = Decimal(str(percentage))
    for letter, minimum in LETTER_GRADES:
        if percentage >= minimum:
            return letter
    return 'F'


def percentage(score, max_score) -> Decimal:
    if not max_score:
        return Decimal('0.00')
    return _round(Decimal(score) / Decimal(max_score) * 100)


def final_grade(homework_score, homework_max, exam_score, exam_max) -> Decimal:
    """Weighted final grade; a missing component counts as 0%."""
    config = settings.GRADE_CALCULATION
    homework_weight = Decimal(str(config['HOMEWORK_WEIGHT']))
    exam_weight = Decimal(str(config['EXAM_WEIGHT']))
    return _round(
        percentage(homework_score, homework_max) * homework_weight
        + percentage(exam_score, exam_max) * exam_weight
    )


class GradeReportService:

    @classmethod
    def student_report(cls, student) -> list:
        best_attempts = Submission.objects.filter(
            student=student,
            status=Submission.Status.GRADED,
            is_highest_score=True,
        ).select_related('exam__subject').order_by('exam__subject__name', 'exam__title')

        subjects = OrderedDict()
        for attempt in best_attempts:
            subject = attempt.exam.subject
            row = subjects.setdefault(subject.pk, {
                'subject_id': subject.pk,
                'subject_name': subject.name,
                'homework_score': Decimal(0),
                'homework_max_score': Decimal(0),
                'exam_score': Decimal(0),
                'exam_max_score': Decimal(0),
            })
            prefix = 'homework' if attempt.exam.kind == Exam.Kind.HOMEWORK else 'exam'
            row[f'{prefix}_score'] += attempt.total_score or 0
            row[f'{prefix}_max_score'] += attempt.max_score or 0

        report = []
        for row in subjects.values():
            grade = final_grade(
                row['homework_score'], row['homework_max_score'],
                row['exam_score'], row['exam_max_score'],
            )
            report.append({
                **row,
                'homework_percentage': percentage(row['homework_score'], row['homework_max_score']),
                'exam_percentage': percentage(row['exam_score'], row['exam_max_score']),
                'final_grade': grade,
                'letter_grade': letter_grade(grade),
            })

        logger.debug(f"Built grade report for user {student.pk}: {len(report)} subjects")
        return report
