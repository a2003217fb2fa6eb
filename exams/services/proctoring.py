"""
Proctoring violation aggregation.

Violations reported by the exam client are appended to the attempt's
``proctoring_data``. Crossing the exam's warning threshold (with
auto-terminate on) ends the attempt through a forced submit, exactly once.
"""
import logging
from dataclasses import dataclass

from django.conf import settings
from django.db import models, transaction
from django.utils import timezone

from exams.exceptions import InvalidAttemptState
from exams.models import Submission
from .attempts import AttemptService

logger = logging.getLogger(__name__)


class ViolationType(models.TextChoices):
    FULLSCREEN_EXIT = 'fullscreen_exit', 'Exited fullscreen'
    TAB_SWITCH = 'tab_switch', 'Switched tab'
    WINDOW_BLUR = 'window_blur', 'Window lost focus'
    CONTEXT_MENU = 'context_menu', 'Opened context menu'
    DEVTOOLS = 'devtools', 'Opened developer tools'
    OTHER = 'other', 'Other'


def violation_severity(count: int) -> str:
    """Reporting bucket for a violation count: none, low, medium or high."""
    bands = settings.PROCTORING.get('SEVERITY_BANDS', {'low': 1, 'medium': 3, 'high': 6})
    if count >= bands['high']:
        return 'high'
    if count >= bands['medium']:
        return 'medium'
    if count >= bands['low']:
        return 'low'
    return 'none'


def empty_proctoring_data():
    return {
        'violations': [],
        'total_violations': 0,
        'counts_by_type': {},
        'is_terminated_for_violations': False,
        'terminated_at': None,
    }


@dataclass
class ViolationOutcome:
    submission: Submission
    total_violations: int
    severity: str
    terminated: bool
    force_submitted: bool = False

    @property
    def warnings_remaining(self):
        exam = self.submission.exam
        if not exam.proctoring_auto_terminate or self.terminated:
            return None
        return max(exam.proctoring_warning_threshold - self.total_violations, 0)


class ProctoringAggregator:

    @classmethod
    def record_violation(cls, submission, violation_type, description='', timestamp=None) -> ViolationOutcome:
        timestamp = timestamp or timezone.now()
        if violation_type not in ViolationType.values:
            logger.warning(f"Unknown violation type '{violation_type}' on submission {submission.pk}, recorded as 'other'")
            violation_type = ViolationType.OTHER

        with transaction.atomic():
            locked = Submission.objects.select_for_update().select_related('exam').get(pk=submission.pk)
            data = {**empty_proctoring_data(), **(locked.proctoring_data or {})}
            already_terminated = data['is_terminated_for_violations']

            if not locked.is_in_progress and not already_terminated:
                raise InvalidAttemptState(
                    "Violations can only be recorded during an attempt.",
                    submission_id=locked.pk, status=locked.status
                )

            max_log = settings.PROCTORING.get('MAX_LOGGED_VIOLATIONS')
            data['violations'] = list(data['violations']) + [{
                'type': str(violation_type),
                'timestamp': timestamp.isoformat(),
                'description': description,
            }]
            if max_log:
                data['violations'] = data['violations'][-max_log:]
            data['total_violations'] += 1
            counts = dict(data['counts_by_type'])
            counts[str(violation_type)] = counts.get(str(violation_type), 0) + 1
            data['counts_by_type'] = counts

            exam = locked.exam
            terminate = (
                not already_terminated
                and exam.proctoring_auto_terminate
                and data['total_violations'] >= exam.proctoring_warning_threshold
            )
            if terminate:
                data['is_terminated_for_violations'] = True
                data['terminated_at'] = timestamp.isoformat()

            locked.proctoring_data = data
            locked.save(update_fields=['proctoring_data'])

            if terminate:
                logger.warning(
                    f"Submission {locked.pk} terminated after {data['total_violations']} violations "
                    f"(threshold {exam.proctoring_warning_threshold})"
                )
                locked = AttemptService.submit(locked, now=timestamp, forced=True)
            elif already_terminated:
                logger.info(f"Violation '{violation_type}' logged on terminated submission {locked.pk}")
            else:
                logger.info(f"Violation '{violation_type}' #{data['total_violations']} on submission {locked.pk}")

        return ViolationOutcome(
            submission=locked,
            total_violations=data['total_violations'],
            severity=violation_severity(data['total_violations']),
            terminated=data['is_terminated_for_violations'],
            force_submitted=terminate,
        )

    @classmethod
    def summary(cls, submission) -> dict:
        data = {**empty_proctoring_data(), **(submission.proctoring_data or {})}
        return {
            'total_violations': data['total_violations'],
            'counts_by_type': data['counts_by_type'],
            'severity': violation_severity(data['total_violations']),
            'is_terminated_for_violations': data['is_terminated_for_violations'],
            'terminated_at': data['terminated_at'],
            'violations': data['violations'],
        }
