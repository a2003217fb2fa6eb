"""
Attempt lifecycle: start/resume, autosave, submit, manual grading and
highest-score selection.

Every mutating operation runs inside ``transaction.atomic()`` and locks the
submission row(s) it touches with ``select_for_update()``.
"""
import json
import logging
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.db.models import Max
from django.utils import timezone

from exams.exceptions import (
    AttemptLimitExceeded, ExamNotAvailable, InvalidAttemptState,
    MalformedAnswerError, QuestionNotInExam, ScoreOutOfRange,
)
from exams.grading import QuestionType, get_grading_engine
from exams.models import Answer, Exam, ExamQuestion, Submission
from .shuffling import build_presentation, option_permutation, to_canonical_selection

logger = logging.getLogger(__name__)


def _raw_text(raw) -> str:
    if raw is None:
        return ''
    if isinstance(raw, str):
        return raw
    return json.dumps(raw)


class AttemptService:
    """State machine over ``Submission`` rows."""

    # =========================================================================
    # START / RESUME
    # =========================================================================

    @classmethod
    def start_attempt(cls, exam, student, now=None) -> Submission:
        """Return the student's in-progress attempt, or open a new one.

        Raises ``ExamNotAvailable`` outside the availability window and
        ``AttemptLimitExceeded`` when ``attempts_allowed`` is used up.
        """
        now = now or timezone.now()
        with transaction.atomic():
            # Serialises attempt creation for this exam
            exam = Exam.objects.select_for_update().get(pk=exam.pk)

            in_progress = Submission.objects.filter(
                exam=exam, student=student, status=Submission.Status.IN_PROGRESS
            ).order_by('attempt_number').first()
            if in_progress:
                logger.info(f"Resuming attempt {in_progress.attempt_number} of exam {exam.pk} for user {student.pk}")
                return in_progress

            if exam.status != Exam.Status.ACTIVE or not exam.is_open(now):
                raise ExamNotAvailable(exam_id=exam.pk)

            last = Submission.objects.filter(exam=exam, student=student).aggregate(
                last=Max('attempt_number')
            )['last'] or 0
            attempt_number = last + 1
            if not exam.allows_attempt(attempt_number):
                raise AttemptLimitExceeded(
                    exam_id=exam.pk, attempts_allowed=exam.attempts_allowed
                )

            submission = Submission.objects.create(
                exam=exam,
                student=student,
                attempt_number=attempt_number,
                started_at=now,
                time_remaining_seconds=exam.duration * 60 if exam.duration else None,
                presentation=build_presentation(exam, student, attempt_number),
            )

        logger.info(f"User {student.pk} started attempt {attempt_number} of exam {exam.pk} (submission {submission.pk})")
        return submission

    # =========================================================================
    # AUTOSAVE
    # =========================================================================

    @classmethod
    def save_progress(cls, submission, progress_data, time_remaining_seconds=None, now=None) -> Submission:
        """Replace the autosave snapshot. Last write wins."""
        now = now or timezone.now()
        with transaction.atomic():
            locked = Submission.objects.select_for_update().get(pk=submission.pk)
            if not locked.is_in_progress:
                raise InvalidAttemptState(
                    "Progress can only be saved while the attempt is in progress.",
                    submission_id=locked.pk, status=locked.status
                )
            locked.progress_data = progress_data
            locked.last_saved_at = now
            fields = ['progress_data', 'last_saved_at']
            if time_remaining_seconds is not None:
                locked.time_remaining_seconds = max(int(time_remaining_seconds), 0)
                fields.append('time_remaining_seconds')
            locked.save(update_fields=fields)

        logger.debug(f"Autosaved submission {locked.pk}")
        return locked

    @classmethod
    def time_remaining(cls, submission, now=None):
        """Seconds left for a timed attempt, ``None`` when untimed.

        The last autosaved value wins so a resumed attempt picks up where the
        client's timer stopped; otherwise the exam's budget minus elapsed time.
        """
        duration = submission.exam.duration
        if not duration:
            return None
        if not submission.is_in_progress:
            return 0
        if submission.time_remaining_seconds is not None and submission.last_saved_at:
            return submission.time_remaining_seconds
        now = now or timezone.now()
        elapsed = int((now - submission.started_at).total_seconds())
        return max(duration * 60 - elapsed, 0)

    # =========================================================================
    # SUBMIT
    # =========================================================================

    @classmethod
    def _responses(cls, submission, responses):
        if responses is None:
            responses = (submission.progress_data or {}).get('answers') or {}
        if not isinstance(responses, dict):
            raise MalformedAnswerError("Responses must map question ids to answers.", submission_id=submission.pk)
        return responses

    @classmethod
    def _by_question_id(cls, submission, responses, question_ids):
        keyed = {}
        for key, raw in responses.items():
            try:
                question_id = int(key)
            except (TypeError, ValueError):
                raise QuestionNotInExam(submission_id=submission.pk, question_id=key)
            if question_id not in question_ids:
                raise QuestionNotInExam(submission_id=submission.pk, question_id=question_id)
            keyed[question_id] = raw
        return keyed

    @classmethod
    def _salvaged(cls, submission, responses, question_ids):
        """Usable answers for a forced submit; anything unreadable is dropped."""
        if responses is None:
            progress = submission.progress_data if isinstance(submission.progress_data, dict) else {}
            responses = progress.get('answers') or {}
        if not isinstance(responses, dict):
            logger.warning(f"Ignoring autosaved answers of submission {submission.pk}: not a mapping")
            return {}
        keyed = {}
        for key, raw in responses.items():
            try:
                question_id = int(key)
            except (TypeError, ValueError):
                question_id = None
            if question_id not in question_ids:
                logger.warning(f"Ignoring autosaved answer for question {key!r} of submission {submission.pk}")
                continue
            keyed[question_id] = raw
        return keyed

    @classmethod
    def _grade_answer(cls, engine, submission, exam_question, raw):
        """Grade one raw response and build its (unsaved) Answer row."""
        question = exam_question.question
        definition = exam_question.to_definition()
        answer = Answer(submission=submission, question=question)
        fmt = question.answer_format

        try:
            response = fmt.decode_response(raw)
        except MalformedAnswerError:
            result = engine.grade_raw(definition, raw)
            answer.answer_text = _raw_text(raw)
        else:
            if question.question_type == QuestionType.MULTIPLE_CHOICE:
                permutation = option_permutation(submission.presentation, question.pk)
                response = to_canonical_selection(response, permutation)
            result = engine.grade(definition, response)
            answer.set_response(response)

        answer.score = result.score
        answer.max_score = result.max_score
        answer.requires_manual_review = result.requires_manual_review
        answer.feedback = result.error or result.feedback
        if result.score is not None:
            answer.graded_at = submission.submitted_at
        return answer

    @classmethod
    def submit(cls, submission, responses=None, now=None, forced=False) -> Submission:
        """Finalise an attempt and auto-grade its answers.

        ``responses`` maps question id to the raw answer as the client sends
        it; when omitted the autosaved ``progress_data['answers']`` is used.
        ``forced`` is the proctoring termination path: it never marks the
        attempt late and skips autosaved answers it cannot use instead of
        rejecting the submit.
        """
        now = now or timezone.now()
        engine = get_grading_engine()

        with transaction.atomic():
            locked = Submission.objects.select_for_update().select_related('exam').get(pk=submission.pk)
            if not locked.is_in_progress:
                raise InvalidAttemptState(
                    "This attempt has already been submitted.",
                    submission_id=locked.pk, status=locked.status
                )

            exam = locked.exam
            exam_questions = list(exam.ordered_questions())
            question_ids = {eq.question_id for eq in exam_questions}
            if forced:
                keyed = cls._salvaged(locked, responses, question_ids)
            else:
                keyed = cls._by_question_id(locked, cls._responses(locked, responses), question_ids)

            locked.submitted_at = now
            answers = [
                cls._grade_answer(engine, locked, eq, keyed.get(eq.question_id))
                for eq in exam_questions
            ]
            locked.answers.all().delete()
            Answer.objects.bulk_create(answers)

            needs_review = any(a.requires_manual_review for a in answers)
            locked.total_score = engine.quantize(sum((a.score for a in answers if a.score is not None), Decimal(0)))
            locked.max_score = engine.quantize(sum((a.max_score for a in answers), Decimal(0)))
            locked.status = Submission.Status.PENDING if needs_review else Submission.Status.GRADED
            locked.graded_at = None if needs_review else now
            locked.time_taken_seconds = max(int((now - locked.started_at).total_seconds()), 0)
            locked.is_late = False if forced else exam.is_late(now)
            locked.progress_data = None
            locked.save(update_fields=[
                'submitted_at', 'total_score', 'max_score', 'status', 'graded_at',
                'time_taken_seconds', 'is_late', 'progress_data',
            ])

            if locked.status == Submission.Status.GRADED:
                cls.recompute_highest_score(exam, locked.student)
                locked.refresh_from_db(fields=['is_highest_score'])

        logger.info(
            f"Submission {locked.pk} {'force-' if forced else ''}submitted: "
            f"{locked.total_score}/{locked.max_score}, status={locked.status}, late={locked.is_late}"
        )
        return locked

    # =========================================================================
    # MANUAL GRADING
    # =========================================================================

    @classmethod
    def grade_manually(cls, submission, question, score, grader, feedback='', now=None) -> Answer:
        """Record an instructor's score for one answer and roll up the attempt."""
        now = now or timezone.now()
        question_id = getattr(question, 'pk', question)
        engine = get_grading_engine()

        with transaction.atomic():
            locked = Submission.objects.select_for_update().select_related('exam').get(pk=submission.pk)
            if locked.is_in_progress:
                raise InvalidAttemptState(
                    "An attempt must be submitted before it can be graded.",
                    submission_id=locked.pk, status=locked.status
                )
            if not ExamQuestion.objects.filter(exam_id=locked.exam_id, question_id=question_id).exists():
                raise QuestionNotInExam(submission_id=locked.pk, question_id=question_id)

            try:
                answer = Answer.objects.select_for_update().get(submission=locked, question_id=question_id)
            except Answer.DoesNotExist:
                raise QuestionNotInExam(submission_id=locked.pk, question_id=question_id)

            try:
                value = engine.quantize(score)
            except (InvalidOperation, TypeError, ValueError):
                raise ScoreOutOfRange(f"'{score}' is not a valid score.", submission_id=locked.pk, question_id=question_id)
            if value < 0 or value > answer.max_score:
                raise ScoreOutOfRange(
                    submission_id=locked.pk, question_id=question_id,
                    score=str(value), max_score=str(answer.max_score)
                )

            answer.score = value
            answer.feedback = feedback
            answer.requires_manual_review = False
            answer.graded_by = grader
            answer.graded_at = now
            answer.save(update_fields=['score', 'feedback', 'requires_manual_review', 'graded_by', 'graded_at'])

            answers = list(locked.answers.all())
            locked.total_score = engine.quantize(sum((a.score for a in answers if a.score is not None), Decimal(0)))
            if any(a.requires_manual_review for a in answers):
                locked.status = Submission.Status.PENDING
            else:
                locked.status = Submission.Status.GRADED
                locked.graded_at = now
            locked.save(update_fields=['total_score', 'status', 'graded_at'])

            if locked.status == Submission.Status.GRADED:
                cls.recompute_highest_score(locked.exam, locked.student)

        logger.info(f"User {grader.pk} graded question {question_id} of submission {locked.pk}: {value}/{answer.max_score}")
        return answer

    # =========================================================================
    # HIGHEST SCORE
    # =========================================================================

    @classmethod
    def recompute_highest_score(cls, exam, student):
        """Flag the best graded attempt for (student, exam); ties go to the earliest."""
        with transaction.atomic():
            attempts = list(
                Submission.objects.select_for_update()
                .filter(exam=exam, student=student)
                .order_by('attempt_number')
            )
            best, best_ratio = None, None
            for attempt in attempts:
                if attempt.status != Submission.Status.GRADED:
                    continue
                ratio = (attempt.total_score or Decimal(0)) / attempt.max_score if attempt.max_score else Decimal(0)
                if best is None or ratio > best_ratio:
                    best, best_ratio = attempt, ratio

            for attempt in attempts:
                flag = best is not None and attempt.pk == best.pk
                if attempt.is_highest_score != flag:
                    attempt.is_highest_score = flag
                    attempt.save(update_fields=['is_highest_score'])

        return best
