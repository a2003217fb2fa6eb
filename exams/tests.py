"""
Test cases for the ExamFlow grading service.
Covers the answer codec, grading engine, attempt lifecycle, proctoring,
shuffling, grade reports and the REST API.
"""
from datetime import timedelta
from decimal import Decimal
from unittest import mock

from django.core.cache import cache
from django.test import TestCase
from django.contrib.auth.models import User
from django.utils import timezone
from rest_framework.test import APITestCase
from rest_framework import status
from rest_framework.authtoken.models import Token

from .exceptions import (
    AttemptLimitExceeded, ExamNotAvailable, InvalidAttemptState,
    MalformedAnswerError, QuestionNotInExam, ScoreOutOfRange,
)
from .grading import GradingEngine, QuestionDefinition, QuestionType, codec
from .grading.advisory import reference_similarity
from .grading.codec import DragDropLayout, DropZone, MatchPair
from .models import Subject, Question, Exam, ExamQuestion, Submission, UserProfile
from .services import AttemptService, ProctoringAggregator, GradeReportService, violation_severity
from .services.grades import final_grade, letter_grade
from .services.shuffling import (
    SeededRandom, generate_seed, shuffle_with_permutation, to_canonical_selection,
)


def make_user(username, role=UserProfile.Role.STUDENT):
    user = User.objects.create_user(username, f'{username}@test.com', 'pass123')
    user.profile.role = role
    user.profile.save()
    return user


def make_question(instructor, subject, question_type, options=None, key=None, points=1, text='Question'):
    question = Question(
        instructor=instructor,
        subject=subject,
        question_type=question_type,
        question_text=text,
        points=points,
    )
    if options is not None:
        question.set_options(options)
    question.set_answer_key(key)
    question.save()
    return question


def make_exam(instructor, subject, questions, **kwargs):
    defaults = {'title': 'Exam', 'status': Exam.Status.ACTIVE, 'attempts_allowed': -1}
    defaults.update(kwargs)
    exam = Exam.objects.create(instructor=instructor, subject=subject, **defaults)
    for order, question in enumerate(questions, start=1):
        ExamQuestion.objects.create(exam=exam, question=question, order=order)
    return exam


def definition(question_type, key, points=1, options=None):
    return QuestionDefinition(
        question_id=1, question_type=question_type, max_score=Decimal(points),
        options=options, key=key,
    )


class AnswerCodecTests(TestCase):
    """Tests for stored <-> canonical conversion."""

    def test_multiple_choice_set_round_trip(self):
        stored = codec.encode_key(QuestionType.MULTIPLE_CHOICE, frozenset({'C', 'A'}))
        self.assertEqual(stored, '["A", "C"]')
        self.assertEqual(codec.decode_key(QuestionType.MULTIPLE_CHOICE, stored), frozenset({'A', 'C'}))

    def test_multiple_choice_accepts_indices(self):
        self.assertEqual(codec.decode_response(QuestionType.MULTIPLE_CHOICE, '1'), 'B')
        self.assertEqual(codec.decode_response(QuestionType.MULTIPLE_CHOICE, [0, 2]), frozenset({'A', 'C'}))

    def test_multiple_choice_rejects_garbage(self):
        with self.assertRaises(MalformedAnswerError):
            codec.decode_response(QuestionType.MULTIPLE_CHOICE, 'not a letter')

    def test_fill_blank_round_trip(self):
        stored = codec.encode_key(QuestionType.FILL_BLANK, ['Paris', '1889'])
        self.assertEqual(stored, 'Paris|1889')
        self.assertEqual(codec.decode_key(QuestionType.FILL_BLANK, stored), ['Paris', '1889'])

    def test_fill_blank_positions_dict(self):
        response = codec.decode_response(QuestionType.FILL_BLANK, {'0': 'Paris', '2': 'x'})
        self.assertEqual(response, ['Paris', '', 'x'])

    def test_matching_legacy_shapes(self):
        pairs = codec.decode_options(QuestionType.MATCHING, ['Gold|Au', 'Iron|Fe'])
        self.assertEqual(pairs, [MatchPair('Gold', 'Au'), MatchPair('Iron', 'Fe')])
        key = codec.decode_key(QuestionType.MATCHING, '{"Gold": "Au"}')
        self.assertEqual(key, [MatchPair('Gold', 'Au')])

    def test_matching_response_round_trip(self):
        response = {0: 'Au', 2: 'Na'}
        stored = codec.encode_response(QuestionType.MATCHING, response)
        self.assertEqual(codec.decode_response(QuestionType.MATCHING, stored), response)

    def test_drag_drop_key_round_trip(self):
        key = [DropZone('Mammals', ['Whale', 'Bat']), DropZone('Birds', ['Eagle'])]
        stored = codec.encode_key(QuestionType.DRAG_DROP, key)
        self.assertEqual(codec.decode_key(QuestionType.DRAG_DROP, stored), key)

    def test_drag_drop_legacy_item_to_zone_response(self):
        response = codec.decode_response(
            QuestionType.DRAG_DROP, '{"Whale": "Mammals", "Eagle": "Birds", "Bat": "Mammals"}'
        )
        self.assertEqual(response, {'Mammals': ['Whale', 'Bat'], 'Birds': ['Eagle']})

    def test_ranking_invalid_json(self):
        with self.assertRaises(MalformedAnswerError):
            codec.decode_response(QuestionType.RANKING, '["a", ')

    def test_free_text_rejects_structures(self):
        with self.assertRaises(MalformedAnswerError):
            codec.decode_response(QuestionType.ESSAY, {'text': 'hello'})

    def test_render_multiple_choice(self):
        rendered = codec.render_response(QuestionType.MULTIPLE_CHOICE, 'B', ['London', 'Paris'])
        self.assertEqual(rendered, 'B. Paris')

    def test_unknown_type(self):
        with self.assertRaises(MalformedAnswerError):
            codec.get_format('true_false')

    def test_formats_must_implement_conversions(self):
        with self.assertRaises(TypeError):
            codec.AnswerFormat()


class AnswerRoundTripTests(TestCase):
    """Decoding what was encoded gives back the same value, per type and shape."""

    def assertRoundTrip(self, question_type, options=None, key=None, response=None):
        if options is not None:
            stored = codec.encode_options(question_type, options)
            self.assertEqual(codec.decode_options(question_type, stored), options)
        if key is not None:
            stored = codec.encode_key(question_type, key)
            self.assertEqual(codec.decode_key(question_type, stored), key)
        if response is not None:
            stored = codec.encode_response(question_type, response)
            self.assertEqual(codec.decode_response(question_type, stored), response)

    def test_multiple_choice(self):
        self.assertRoundTrip(QuestionType.MULTIPLE_CHOICE, options=['London', 'Paris', 'Rome'], key='B', response='C')
        self.assertRoundTrip(QuestionType.MULTIPLE_CHOICE, key=frozenset({'A', 'C'}), response=frozenset({'B'}))

    def test_fill_blank(self):
        self.assertRoundTrip(QuestionType.FILL_BLANK, key=['Paris', '1889'], response=['Paris', ''])
        self.assertRoundTrip(QuestionType.FILL_BLANK, key=[], response=[''])

    def test_matching(self):
        pairs = [MatchPair('Gold', 'Au'), MatchPair('Iron', 'Fe')]
        self.assertRoundTrip(QuestionType.MATCHING, options=pairs, key=pairs, response={0: 'Fe', 1: 'Au'})

    def test_ranking(self):
        self.assertRoundTrip(QuestionType.RANKING, options=['Venus', 'Mercury', 'Earth'],
                             key=['Mercury', 'Venus', 'Earth'], response=['Venus', 'Mercury', 'Earth'])

    def test_drag_drop(self):
        layout = DragDropLayout(zones=['Mammals', 'Birds'], items=['Whale', 'Eagle', 'Bat'])
        self.assertRoundTrip(
            QuestionType.DRAG_DROP,
            options=layout,
            key=[DropZone('Mammals', ['Whale', 'Bat']), DropZone('Birds', ['Eagle'])],
            response={'Mammals': ['Whale'], 'Birds': ['Eagle', 'Bat']},
        )

    def test_drag_drop_zone_named_zones(self):
        self.assertRoundTrip(QuestionType.DRAG_DROP, response={'zones': ['Whale']})
        self.assertRoundTrip(QuestionType.DRAG_DROP, response={'zones': []})

    def test_free_text(self):
        for question_type in (QuestionType.SHORT_ANSWER, QuestionType.ESSAY, QuestionType.STEM):
            with self.subTest(question_type=question_type):
                self.assertRoundTrip(question_type, key='Light scatters off air molecules.',
                                     response='Rayleigh scattering | shorter wavelengths')
                self.assertRoundTrip(question_type, response='')


class GradingEngineTests(TestCase):
    """Tests for deterministic per-answer scoring."""

    def setUp(self):
        self.engine = GradingEngine()

    def test_mcq_single_correct(self):
        result = self.engine.grade(definition(QuestionType.MULTIPLE_CHOICE, 'B', 2), 'B')
        self.assertEqual(result.score, Decimal('2.00'))
        self.assertTrue(result.is_correct)

    def test_mcq_multiple_is_all_or_nothing(self):
        result = self.engine.grade(
            definition(QuestionType.MULTIPLE_CHOICE, frozenset({'A', 'C'}), 4), frozenset({'A'})
        )
        self.assertEqual(result.score, Decimal('0.00'))

    def test_mcq_multiple_exact_set(self):
        result = self.engine.grade(
            definition(QuestionType.MULTIPLE_CHOICE, frozenset({'A', 'C'}), 4), frozenset({'C', 'A'})
        )
        self.assertEqual(result.score, Decimal('4.00'))

    def test_fill_blank_partial_credit(self):
        result = self.engine.grade_raw(definition(QuestionType.FILL_BLANK, ['Paris', '1889'], 2), 'paris|1890')
        self.assertEqual(result.score, Decimal('1.00'))

    def test_fill_blank_missing_blanks_are_wrong(self):
        result = self.engine.grade_raw(definition(QuestionType.FILL_BLANK, ['a', 'b', 'c'], 3), ' A ')
        self.assertEqual(result.score, Decimal('1.00'))

    def test_ranking_partial_credit(self):
        result = self.engine.grade(definition(QuestionType.RANKING, ['X', 'Y', 'Z'], 3), ['X', 'Z', 'Y'])
        self.assertEqual(result.score, Decimal('1.00'))

    def test_ranking_rounds_to_two_places(self):
        result = self.engine.grade(definition(QuestionType.RANKING, ['X', 'Y', 'Z'], 1), ['X', 'Z', 'Y'])
        self.assertEqual(result.score, Decimal('0.33'))

    def test_matching_per_pair(self):
        key = [MatchPair('Gold', 'Au'), MatchPair('Iron', 'Fe')]
        result = self.engine.grade(definition(QuestionType.MATCHING, key, 2), {0: 'Au', 1: 'Na'})
        self.assertEqual(result.score, Decimal('1.00'))

    def test_drag_drop_zone_sets(self):
        key = [DropZone('Mammals', ['Whale', 'Bat']), DropZone('Birds', ['Eagle'])]
        result = self.engine.grade(
            definition(QuestionType.DRAG_DROP, key, 2),
            {'Mammals': ['Bat', 'Whale'], 'Birds': ['Eagle', 'Bat']}
        )
        self.assertEqual(result.score, Decimal('1.00'))

    def test_free_text_requires_manual_review(self):
        for question_type in (QuestionType.SHORT_ANSWER, QuestionType.ESSAY, QuestionType.STEM):
            result = self.engine.grade_raw(definition(question_type, 'reference', 5), 'an answer')
            self.assertTrue(result.requires_manual_review)
            self.assertIsNone(result.score)

    def test_missing_answer_scores_zero(self):
        result = self.engine.grade_raw(definition(QuestionType.MULTIPLE_CHOICE, 'A', 2), None)
        self.assertEqual(result.score, Decimal('0.00'))

    def test_malformed_answer_scores_zero_with_error(self):
        result = self.engine.grade_raw(definition(QuestionType.RANKING, ['X', 'Y'], 2), '{broken')
        self.assertEqual(result.score, Decimal('0.00'))
        self.assertTrue(result.error)

    def test_malformed_free_text_surfaces_error_for_review(self):
        result = self.engine.grade_raw(definition(QuestionType.ESSAY, None, 5), {'not': 'text'})
        self.assertTrue(result.requires_manual_review)
        self.assertTrue(result.error)

    def test_missing_key_scores_zero(self):
        result = self.engine.grade(definition(QuestionType.MULTIPLE_CHOICE, None, 2), 'A')
        self.assertEqual(result.score, Decimal('0.00'))
        self.assertTrue(result.error)


class AttemptLifecycleTests(TestCase):
    """Tests for starting, saving, submitting and grading attempts."""

    def setUp(self):
        self.instructor = make_user('instructor', UserProfile.Role.INSTRUCTOR)
        self.student = make_user('student')
        self.subject = Subject.objects.create(name='Science')
        self.mcq = make_question(self.instructor, self.subject, QuestionType.MULTIPLE_CHOICE,
                                 ['London', 'Paris', 'Rome'], 'B', points=2)
        self.essay = make_question(self.instructor, self.subject, QuestionType.ESSAY,
                                   key='Light scatters off air molecules.', points=5)

    def test_start_creates_first_attempt(self):
        exam = make_exam(self.instructor, self.subject, [self.mcq], duration=30)
        submission = AttemptService.start_attempt(exam, self.student)
        self.assertEqual(submission.attempt_number, 1)
        self.assertEqual(submission.status, Submission.Status.IN_PROGRESS)
        self.assertEqual(submission.time_remaining_seconds, 1800)

    def test_start_resumes_in_progress_attempt(self):
        exam = make_exam(self.instructor, self.subject, [self.mcq])
        first = AttemptService.start_attempt(exam, self.student)
        again = AttemptService.start_attempt(exam, self.student)
        self.assertEqual(first.pk, again.pk)
        self.assertEqual(Submission.objects.filter(exam=exam).count(), 1)

    def test_attempt_limit(self):
        exam = make_exam(self.instructor, self.subject, [self.mcq], attempts_allowed=2)
        for _ in range(2):
            AttemptService.submit(AttemptService.start_attempt(exam, self.student), {self.mcq.pk: 'B'})
        with self.assertRaises(AttemptLimitExceeded):
            AttemptService.start_attempt(exam, self.student)
        numbers = list(Submission.objects.filter(exam=exam).order_by('attempt_number')
                       .values_list('attempt_number', flat=True))
        self.assertEqual(numbers, [1, 2])

    def test_unlimited_attempts(self):
        exam = make_exam(self.instructor, self.subject, [self.mcq], attempts_allowed=-1)
        for _ in range(4):
            AttemptService.submit(AttemptService.start_attempt(exam, self.student), {})
        self.assertEqual(AttemptService.start_attempt(exam, self.student).attempt_number, 5)

    def test_exam_outside_window(self):
        exam = make_exam(self.instructor, self.subject, [self.mcq],
                         available_from=timezone.now() + timedelta(days=1))
        with self.assertRaises(ExamNotAvailable):
            AttemptService.start_attempt(exam, self.student)

    def test_draft_exam_not_available(self):
        exam = make_exam(self.instructor, self.subject, [self.mcq], status=Exam.Status.DRAFT)
        with self.assertRaises(ExamNotAvailable):
            AttemptService.start_attempt(exam, self.student)

    def test_save_progress_replaces_snapshot(self):
        exam = make_exam(self.instructor, self.subject, [self.mcq], duration=30)
        submission = AttemptService.start_attempt(exam, self.student)
        AttemptService.save_progress(submission, {'answers': {str(self.mcq.pk): 'A'}, 'current': 0}, 900)
        saved = AttemptService.save_progress(submission, {'answers': {str(self.mcq.pk): 'B'}})
        self.assertEqual(saved.progress_data, {'answers': {str(self.mcq.pk): 'B'}})
        self.assertEqual(saved.time_remaining_seconds, 900)
        self.assertEqual(saved.attempt_number, 1)
        self.assertEqual(Submission.objects.filter(exam=exam).count(), 1)

    def test_save_progress_after_submit_rejected(self):
        exam = make_exam(self.instructor, self.subject, [self.mcq])
        submission = AttemptService.submit(AttemptService.start_attempt(exam, self.student), {})
        with self.assertRaises(InvalidAttemptState):
            AttemptService.save_progress(submission, {'answers': {}})

    def test_time_remaining(self):
        exam = make_exam(self.instructor, self.subject, [self.mcq], duration=30)
        now = timezone.now()
        submission = AttemptService.start_attempt(exam, self.student, now=now - timedelta(minutes=10))
        self.assertEqual(AttemptService.time_remaining(submission, now=now), 1200)
        submission = AttemptService.save_progress(submission, {}, time_remaining_seconds=1500, now=now)
        self.assertEqual(AttemptService.time_remaining(submission, now=now), 1500)

    def test_submit_auto_graded(self):
        exam = make_exam(self.instructor, self.subject, [self.mcq])
        submission = AttemptService.start_attempt(exam, self.student)
        AttemptService.save_progress(submission, {'answers': {}})
        submission = AttemptService.submit(submission, {str(self.mcq.pk): 'B'})
        self.assertEqual(submission.status, Submission.Status.GRADED)
        self.assertEqual(submission.total_score, Decimal('2.00'))
        self.assertEqual(submission.max_score, Decimal('2.00'))
        self.assertIsNone(submission.progress_data)
        self.assertTrue(submission.is_highest_score)
        self.assertIsNotNone(submission.time_taken_seconds)

    def test_submit_uses_autosaved_answers(self):
        exam = make_exam(self.instructor, self.subject, [self.mcq])
        submission = AttemptService.start_attempt(exam, self.student)
        AttemptService.save_progress(submission, {'answers': {str(self.mcq.pk): 'B'}})
        submission = AttemptService.submit(submission)
        self.assertEqual(submission.total_score, Decimal('2.00'))

    def test_submit_records_missing_answers_as_empty(self):
        exam = make_exam(self.instructor, self.subject, [self.mcq, self.essay])
        submission = AttemptService.submit(AttemptService.start_attempt(exam, self.student), {})
        self.assertEqual(submission.answers.count(), 2)
        mcq_answer = submission.answers.get(question=self.mcq)
        self.assertEqual(mcq_answer.score, Decimal('0.00'))

    def test_double_submit_rejected(self):
        exam = make_exam(self.instructor, self.subject, [self.mcq])
        submission = AttemptService.submit(AttemptService.start_attempt(exam, self.student), {self.mcq.pk: 'B'})
        with self.assertRaises(InvalidAttemptState):
            AttemptService.submit(submission, {self.mcq.pk: 'A'})
        submission.refresh_from_db()
        self.assertEqual(submission.total_score, Decimal('2.00'))

    def test_submit_foreign_question_rejected(self):
        exam = make_exam(self.instructor, self.subject, [self.mcq])
        submission = AttemptService.start_attempt(exam, self.student)
        with self.assertRaises(QuestionNotInExam):
            AttemptService.submit(submission, {self.essay.pk: 'text'})
        submission.refresh_from_db()
        self.assertEqual(submission.status, Submission.Status.IN_PROGRESS)

    def test_exam_question_points_override(self):
        exam = make_exam(self.instructor, self.subject, [])
        ExamQuestion.objects.create(exam=exam, question=self.mcq, order=1, points=10)
        submission = AttemptService.submit(AttemptService.start_attempt(exam, self.student), {self.mcq.pk: 'B'})
        self.assertEqual(submission.total_score, Decimal('10.00'))

    def test_late_homework_flagged(self):
        now = timezone.now()
        homework = make_exam(self.instructor, self.subject, [self.mcq], kind=Exam.Kind.HOMEWORK,
                             due_date=now + timedelta(hours=1))
        submission = AttemptService.start_attempt(homework, self.student, now=now)
        submission = AttemptService.submit(submission, {}, now=now + timedelta(hours=2))
        self.assertTrue(submission.is_late)

    def test_manual_review_gating(self):
        exam = make_exam(self.instructor, self.subject, [self.mcq, self.essay])
        submission = AttemptService.start_attempt(exam, self.student)
        submission = AttemptService.submit(submission, {self.mcq.pk: 'B', self.essay.pk: 'Rayleigh scattering.'})
        self.assertEqual(submission.status, Submission.Status.PENDING)
        self.assertEqual(submission.total_score, Decimal('2.00'))
        self.assertFalse(submission.is_highest_score)

        AttemptService.grade_manually(submission, self.essay, Decimal('4'), self.instructor, 'Good')
        submission.refresh_from_db()
        self.assertEqual(submission.status, Submission.Status.GRADED)
        self.assertEqual(submission.total_score, Decimal('6.00'))
        self.assertTrue(submission.is_highest_score)
        answer = submission.answers.get(question=self.essay)
        self.assertEqual(answer.graded_by, self.instructor)
        self.assertFalse(answer.requires_manual_review)

    def test_grade_manually_rejections(self):
        other = make_question(self.instructor, self.subject, QuestionType.ESSAY)
        exam = make_exam(self.instructor, self.subject, [self.essay])
        submission = AttemptService.start_attempt(exam, self.student)
        with self.assertRaises(InvalidAttemptState):
            AttemptService.grade_manually(submission, self.essay, 1, self.instructor)

        submission = AttemptService.submit(submission, {self.essay.pk: 'text'})
        with self.assertRaises(QuestionNotInExam):
            AttemptService.grade_manually(submission, other, 1, self.instructor)
        with self.assertRaises(ScoreOutOfRange):
            AttemptService.grade_manually(submission, self.essay, Decimal('5.01'), self.instructor)
        with self.assertRaises(ScoreOutOfRange):
            AttemptService.grade_manually(submission, self.essay, -1, self.instructor)

    def test_question_locks_after_submission(self):
        exam = make_exam(self.instructor, self.subject, [self.mcq])
        submission = AttemptService.start_attempt(exam, self.student)
        self.assertFalse(self.mcq.is_grading_locked())
        AttemptService.submit(submission, {self.mcq.pk: 'A'})
        self.assertTrue(self.mcq.is_grading_locked())


class HighestScoreTests(TestCase):
    """Tests for picking the best attempt per (student, exam)."""

    def setUp(self):
        self.instructor = make_user('instructor', UserProfile.Role.INSTRUCTOR)
        self.student = make_user('student')
        self.subject = Subject.objects.create(name='Science')
        self.blanks = [f'w{i}' for i in range(20)]
        self.question = make_question(self.instructor, self.subject, QuestionType.FILL_BLANK,
                                      key=self.blanks, points=20)
        self.exam = make_exam(self.instructor, self.subject, [self.question])

    def _attempt(self, correct_blanks):
        response = '|'.join(self.blanks[:correct_blanks] + ['x'] * (20 - correct_blanks))
        submission = AttemptService.start_attempt(self.exam, self.student)
        return AttemptService.submit(submission, {self.question.pk: response})

    def test_exactly_one_highest(self):
        for correct in (14, 19, 16):  # 70%, 95%, 80%
            self._attempt(correct)
        flagged = Submission.objects.filter(exam=self.exam, is_highest_score=True)
        self.assertEqual(flagged.count(), 1)
        self.assertEqual(flagged.get().total_score, Decimal('19.00'))
        self.assertEqual(flagged.get().attempt_number, 2)

    def test_tie_goes_to_earliest_attempt(self):
        self._attempt(10)
        self._attempt(10)
        best = AttemptService.recompute_highest_score(self.exam, self.student)
        self.assertEqual(best.attempt_number, 1)
        self.assertEqual(Submission.objects.filter(exam=self.exam, is_highest_score=True).count(), 1)

    def test_pending_attempts_are_ignored(self):
        Submission.objects.create(
            exam=self.exam, student=self.student, attempt_number=1,
            status=Submission.Status.PENDING, total_score=Decimal('20'), max_score=Decimal('20')
        )
        Submission.objects.create(
            exam=self.exam, student=self.student, attempt_number=2,
            status=Submission.Status.GRADED, total_score=Decimal('5'), max_score=Decimal('20')
        )
        best = AttemptService.recompute_highest_score(self.exam, self.student)
        self.assertEqual(best.attempt_number, 2)


class ProctoringTests(TestCase):
    """Tests for violation aggregation and forced termination."""

    def setUp(self):
        self.instructor = make_user('instructor', UserProfile.Role.INSTRUCTOR)
        self.student = make_user('student')
        self.subject = Subject.objects.create(name='Science')
        self.mcq = make_question(self.instructor, self.subject, QuestionType.MULTIPLE_CHOICE,
                                 ['London', 'Paris'], 'B', points=2)
        self.exam = make_exam(self.instructor, self.subject, [self.mcq], enable_proctoring=True,
                              proctoring_warning_threshold=2, proctoring_auto_terminate=True,
                              due_date=timezone.now() - timedelta(days=1))
        self.submission = AttemptService.start_attempt(self.exam, self.student)

    def test_termination_forces_single_submit(self):
        AttemptService.save_progress(self.submission, {'answers': {str(self.mcq.pk): 'B'}})
        with mock.patch.object(AttemptService, 'submit', wraps=AttemptService.submit) as submit:
            first = ProctoringAggregator.record_violation(self.submission, 'tab_switch')
            self.assertFalse(first.terminated)
            self.assertEqual(first.warnings_remaining, 1)

            second = ProctoringAggregator.record_violation(self.submission, 'fullscreen_exit')
            self.assertTrue(second.terminated)
            self.assertTrue(second.force_submitted)

            third = ProctoringAggregator.record_violation(self.submission, 'tab_switch')
            self.assertFalse(third.force_submitted)
            self.assertEqual(submit.call_count, 1)

        self.submission.refresh_from_db()
        data = self.submission.proctoring_data
        self.assertTrue(data['is_terminated_for_violations'])
        self.assertEqual(data['total_violations'], 3)
        self.assertEqual(data['counts_by_type'], {'tab_switch': 2, 'fullscreen_exit': 1})
        self.assertEqual(len(data['violations']), 3)
        self.assertEqual(self.submission.status, Submission.Status.GRADED)
        self.assertEqual(self.submission.total_score, Decimal('2.00'))
        self.assertFalse(self.submission.is_late)

    def _terminate(self):
        ProctoringAggregator.record_violation(self.submission, 'tab_switch')
        outcome = ProctoringAggregator.record_violation(self.submission, 'tab_switch')
        self.assertTrue(outcome.force_submitted)
        self.submission.refresh_from_db()
        return self.submission

    def test_termination_skips_stale_autosaved_questions(self):
        AttemptService.save_progress(self.submission, {'answers': {str(self.mcq.pk): 'B', '999999': 'A'}})
        submission = self._terminate()
        self.assertEqual(submission.status, Submission.Status.GRADED)
        self.assertEqual(submission.total_score, Decimal('2.00'))
        self.assertTrue(submission.is_terminated_for_violations)
        self.assertEqual(submission.proctoring_data['total_violations'], 2)

    def test_termination_with_unreadable_autosave(self):
        AttemptService.save_progress(self.submission, {'answers': ['B']})
        submission = self._terminate()
        self.assertEqual(submission.status, Submission.Status.GRADED)
        self.assertEqual(submission.total_score, Decimal('0.00'))
        self.assertTrue(submission.is_terminated_for_violations)
        self.assertEqual(submission.answers.count(), 1)

    def test_normal_submit_still_rejects_foreign_questions(self):
        AttemptService.save_progress(self.submission, {'answers': {'999999': 'A'}})
        with self.assertRaises(QuestionNotInExam):
            AttemptService.submit(self.submission)

    def test_no_termination_without_auto_terminate(self):
        self.exam.proctoring_auto_terminate = False
        self.exam.save()
        for _ in range(3):
            outcome = ProctoringAggregator.record_violation(self.submission, 'window_blur')
        self.assertFalse(outcome.terminated)
        self.assertEqual(outcome.submission.status, Submission.Status.IN_PROGRESS)

    def test_unknown_type_recorded_as_other(self):
        ProctoringAggregator.record_violation(self.submission, 'screenshot', 'PrintScreen pressed')
        self.submission.refresh_from_db()
        self.assertEqual(self.submission.proctoring_data['violations'][0]['type'], 'other')

    def test_violation_after_normal_submit_rejected(self):
        AttemptService.submit(self.submission, {})
        with self.assertRaises(InvalidAttemptState):
            ProctoringAggregator.record_violation(self.submission, 'tab_switch')

    def test_severity_buckets(self):
        self.assertEqual(violation_severity(0), 'none')
        self.assertEqual(violation_severity(2), 'low')
        self.assertEqual(violation_severity(3), 'medium')
        self.assertEqual(violation_severity(5), 'medium')
        self.assertEqual(violation_severity(6), 'high')


class ShufflingTests(TestCase):
    """Tests for per-attempt option shuffling."""

    def test_seed_is_deterministic_per_attempt(self):
        self.assertEqual(generate_seed(1, 2, 1, 'secret'), generate_seed(1, 2, 1, 'secret'))
        self.assertNotEqual(generate_seed(1, 2, 1, 'secret'), generate_seed(1, 2, 2, 'secret'))

    def test_permutation_describes_shuffle(self):
        items = ['a', 'b', 'c', 'd', 'e']
        shuffled, permutation = shuffle_with_permutation(items, SeededRandom('seed'))
        self.assertEqual(sorted(permutation), list(range(5)))
        self.assertEqual(shuffled, [items[i] for i in permutation])
        again, _ = shuffle_with_permutation(items, SeededRandom('seed'))
        self.assertEqual(shuffled, again)

    def test_presented_letters_map_to_canonical(self):
        permutation = [2, 0, 1]
        self.assertEqual(to_canonical_selection('A', permutation), 'C')
        self.assertEqual(to_canonical_selection(frozenset({'B', 'C'}), permutation), frozenset({'A', 'B'}))
        self.assertEqual(to_canonical_selection('B', None), 'B')

    def test_shuffled_exam_grades_against_canonical_key(self):
        instructor = make_user('instructor', UserProfile.Role.INSTRUCTOR)
        student = make_user('student')
        subject = Subject.objects.create(name='Science')
        question = make_question(instructor, subject, QuestionType.MULTIPLE_CHOICE,
                                 ['London', 'Paris', 'Rome', 'Madrid'], 'B', points=1)
        exam = make_exam(instructor, subject, [question], randomize_options=True)

        submission = AttemptService.start_attempt(exam, student)
        permutation = submission.presentation['option_permutations'][str(question.pk)]
        presented_letter = codec.index_to_letter(permutation.index(1))

        submission = AttemptService.submit(submission, {question.pk: presented_letter})
        self.assertEqual(submission.total_score, Decimal('1.00'))
        self.assertEqual(submission.answers.get().selected_option, 'B')


class GradeReportTests(TestCase):
    """Tests for letter grades and weighted final grades."""

    def test_letter_grades(self):
        self.assertEqual(letter_grade(100), 'A+')
        self.assertEqual(letter_grade(97), 'A+')
        self.assertEqual(letter_grade(92.5), 'A-')
        self.assertEqual(letter_grade(60), 'D-')
        self.assertEqual(letter_grade(59.99), 'F')

    def test_final_grade_weighting(self):
        self.assertEqual(final_grade(40, 50, 90, 100), Decimal('86.00'))
        self.assertEqual(final_grade(0, 0, 50, 100), Decimal('30.00'))

    def test_student_report_uses_highest_attempts(self):
        instructor = make_user('instructor', UserProfile.Role.INSTRUCTOR)
        student = make_user('student')
        subject = Subject.objects.create(name='Science')
        exam = make_exam(instructor, subject, [])
        homework = make_exam(instructor, subject, [], kind=Exam.Kind.HOMEWORK)
        Submission.objects.create(exam=exam, student=student, attempt_number=1, status=Submission.Status.GRADED,
                                  total_score=Decimal('50'), max_score=Decimal('100'))
        Submission.objects.create(exam=exam, student=student, attempt_number=2, status=Submission.Status.GRADED,
                                  total_score=Decimal('90'), max_score=Decimal('100'), is_highest_score=True)
        Submission.objects.create(exam=homework, student=student, attempt_number=1, status=Submission.Status.GRADED,
                                  total_score=Decimal('8'), max_score=Decimal('10'), is_highest_score=True)

        report = GradeReportService.student_report(student)
        self.assertEqual(len(report), 1)
        row = report[0]
        self.assertEqual(row['exam_percentage'], Decimal('90.00'))
        self.assertEqual(row['homework_percentage'], Decimal('80.00'))
        self.assertEqual(row['final_grade'], Decimal('86.00'))
        self.assertEqual(row['letter_grade'], 'B')


class ReferenceSimilarityTests(TestCase):
    """Tests for the reviewer-only similarity hint."""

    def test_identical_text(self):
        score = reference_similarity('Light scatters off air molecules', 'Light scatters off air molecules')
        self.assertAlmostEqual(score, 1.0, places=2)

    def test_nothing_to_compare(self):
        self.assertIsNone(reference_similarity('', 'reference'))
        self.assertIsNone(reference_similarity('an answer', None))


class ExamApiTestCase(APITestCase):
    """Shared fixtures for API tests."""

    def setUp(self):
        cache.clear()
        self.instructor = make_user('instructor', UserProfile.Role.INSTRUCTOR)
        self.student = make_user('student')
        self.other_student = make_user('other')
        self.instructor_token = Token.objects.create(user=self.instructor)
        self.student_token = Token.objects.create(user=self.student)
        self.other_token = Token.objects.create(user=self.other_student)

        self.subject = Subject.objects.create(name='Science')
        self.mcq = make_question(self.instructor, self.subject, QuestionType.MULTIPLE_CHOICE,
                                 ['London', 'Paris', 'Rome'], 'B', points=2)
        self.essay = make_question(self.instructor, self.subject, QuestionType.ESSAY,
                                   key='Light scatters off air molecules.', points=5)
        self.exam = make_exam(self.instructor, self.subject, [self.mcq, self.essay],
                              attempts_allowed=2, duration=30)

    def login(self, token):
        self.client.credentials(HTTP_AUTHORIZATION=f'Token {token.key}')


class QuestionApiTests(ExamApiTestCase):

    def test_protected_endpoint_without_auth(self):
        response = self.client.get('/api/exams/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_student_cannot_create_question(self):
        self.login(self.student_token)
        response = self.client.post('/api/questions/', {
            'subject': self.subject.pk, 'question_type': 'essay', 'question_text': 'Why?'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_instructor_creates_multi_answer_question(self):
        self.login(self.instructor_token)
        response = self.client.post('/api/questions/', {
            'subject': self.subject.pk,
            'question_type': 'multiple_choice',
            'question_text': 'Which are prime?',
            'options': ['2', '4', '5'],
            'correct_answers': ['A', 'C'],
            'points': 2,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        question = Question.objects.get(pk=response.data['id'])
        self.assertEqual(question.answer_key, frozenset({'A', 'C'}))
        self.assertEqual(question.instructor, self.instructor)

    def test_key_outside_options_rejected(self):
        self.login(self.instructor_token)
        response = self.client.post('/api/questions/', {
            'subject': self.subject.pk,
            'question_type': 'multiple_choice',
            'question_text': 'Pick one',
            'options': ['yes', 'no'],
            'correct_answer': 'D',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_malformed_ranking_key_rejected(self):
        self.login(self.instructor_token)
        response = self.client.post('/api/questions/', {
            'subject': self.subject.pk,
            'question_type': 'ranking',
            'question_text': 'Order these',
            'options': ['a', 'b'],
            'correct_answer': '["a", ',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_grading_fields_lock_after_submission(self):
        submission = AttemptService.start_attempt(self.exam, self.student)
        AttemptService.submit(submission, {self.mcq.pk: 'B'})

        self.login(self.instructor_token)
        response = self.client.patch(f'/api/questions/{self.mcq.pk}/', {'correct_answer': 'C'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        response = self.client.patch(f'/api/questions/{self.mcq.pk}/', {'title': 'Capitals'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.mcq.refresh_from_db()
        self.assertEqual(self.mcq.correct_answer, 'B')


class AttemptApiTests(ExamApiTestCase):

    def test_start_then_resume(self):
        self.login(self.student_token)
        response = self.client.post(f'/api/exams/{self.exam.pk}/start/')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(len(response.data['questions']), 2)
        self.assertNotIn('correct_answer', response.data['questions'][0])
        self.assertGreater(response.data['time_remaining'], 1790)

        again = self.client.post(f'/api/exams/{self.exam.pk}/start/')
        self.assertEqual(again.status_code, status.HTTP_200_OK)
        self.assertEqual(again.data['id'], response.data['id'])

    def test_attempt_limit_is_forbidden(self):
        for _ in range(2):
            AttemptService.submit(AttemptService.start_attempt(self.exam, self.student), {})
        self.login(self.student_token)
        response = self.client.post(f'/api/exams/{self.exam.pk}/start/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertIn('detail', response.data)

    def test_save_progress_and_submit(self):
        submission = AttemptService.start_attempt(self.exam, self.student)
        self.login(self.student_token)
        response = self.client.post(f'/api/submissions/{submission.pk}/save-progress/', {
            'progress_data': {'answers': {str(self.mcq.pk): 'B'}, 'current_question': 1},
            'time_remaining_seconds': 1200,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        response = self.client.post(f'/api/submissions/{submission.pk}/submit/', {
            'answers': {str(self.mcq.pk): 'B', str(self.essay.pk): 'Scattering of light.'}
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], Submission.Status.PENDING)

        again = self.client.post(f'/api/submissions/{submission.pk}/submit/', {}, format='json')
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)

    def test_submit_foreign_question(self):
        submission = AttemptService.start_attempt(self.exam, self.student)
        self.login(self.student_token)
        response = self.client.post(f'/api/submissions/{submission.pk}/submit/', {
            'answers': {'999999': 'B'}
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['question_id'], 999999)

    def test_user_cannot_see_others_submission(self):
        submission = AttemptService.start_attempt(self.exam, self.student)
        self.login(self.other_token)
        response = self.client.get(f'/api/submissions/{submission.pk}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_list_shows_only_own_submissions(self):
        mine = AttemptService.start_attempt(self.exam, self.student)
        AttemptService.start_attempt(self.exam, self.other_student)
        self.login(self.student_token)
        response = self.client.get('/api/submissions/')
        self.assertEqual(len(response.data['results']), 1)
        self.assertEqual(response.data['results'][0]['id'], mine.pk)

    def test_scores_hidden_until_graded(self):
        submission = AttemptService.start_attempt(self.exam, self.student)
        AttemptService.submit(submission, {self.mcq.pk: 'B'})
        self.login(self.student_token)
        response = self.client.get(f'/api/submissions/{submission.pk}/')
        self.assertIsNone(response.data['total_score'])

    def test_violation_endpoint_terminates(self):
        self.exam.enable_proctoring = True
        self.exam.proctoring_warning_threshold = 1
        self.exam.save()
        submission = AttemptService.start_attempt(self.exam, self.student)
        self.login(self.student_token)
        response = self.client.post(f'/api/submissions/{submission.pk}/violations/', {
            'violation_type': 'tab_switch', 'description': 'Left the page'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['is_terminated_for_violations'])
        self.assertTrue(response.data['force_submitted'])
        self.assertEqual(response.data['status'], Submission.Status.PENDING)


class ManualGradingApiTests(ExamApiTestCase):

    def setUp(self):
        super().setUp()
        submission = AttemptService.start_attempt(self.exam, self.student)
        self.submission = AttemptService.submit(submission, {
            self.mcq.pk: 'B', self.essay.pk: 'Light scatters off molecules in the air.'
        })

    def test_student_cannot_grade(self):
        self.login(self.student_token)
        response = self.client.post(f'/api/submissions/{self.submission.pk}/grade/', {
            'question_id': self.essay.pk, 'score': '5'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_instructor_grades_pending_answer(self):
        self.login(self.instructor_token)
        response = self.client.post(f'/api/submissions/{self.submission.pk}/grade/', {
            'question_id': self.essay.pk, 'score': '4.5', 'feedback': 'Nearly complete'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], Submission.Status.GRADED)
        self.assertEqual(response.data['total_score'], '6.50')

    def test_score_out_of_range(self):
        self.login(self.instructor_token)
        response = self.client.post(f'/api/submissions/{self.submission.pk}/grade/', {
            'question_id': self.essay.pk, 'score': '7'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_review_includes_similarity_hint(self):
        self.login(self.instructor_token)
        response = self.client.get(f'/api/submissions/{self.submission.pk}/review/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        essay_entry = next(a for a in response.data['answers'] if a['question_id'] == self.essay.pk)
        self.assertTrue(essay_entry['requires_manual_review'])
        self.assertIsNotNone(essay_entry['reference_similarity'])
        self.assertIsNone(essay_entry['score'])
        mcq_entry = next(a for a in response.data['answers'] if a['question_id'] == self.mcq.pk)
        self.assertEqual(mcq_entry['response'], 'B. Paris')

    def test_review_queue(self):
        self.login(self.instructor_token)
        response = self.client.get('/api/submissions/review-queue/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([s['id'] for s in response.data['results']], [self.submission.pk])

    def test_my_grades(self):
        AttemptService.grade_manually(self.submission, self.essay, 5, self.instructor)
        self.login(self.student_token)
        response = self.client.get('/api/grades/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data[0]['exam_percentage'], '100.00')
        self.assertEqual(response.data[0]['final_grade'], '60.00')
        self.assertEqual(response.data[0]['letter_grade'], 'D-')
