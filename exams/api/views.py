"""
API Views for the exam service.
Provides endpoints for subjects, questions, exams, attempts and grade reports.
"""
import logging

from django.contrib.auth.models import User
from django.db.models import Count, Prefetch
from django.shortcuts import get_object_or_404
from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from rest_framework.views import APIView
from drf_spectacular.utils import (
    extend_schema, extend_schema_view, OpenApiExample, OpenApiResponse
)

from exams.exceptions import (
    ExamError, AttemptLimitExceeded, ExamNotAvailable, InvalidAttemptState,
    QuestionNotInExam, ScoreOutOfRange, MalformedAnswerError,
)
from exams.grading import is_auto_gradable
from exams.grading.advisory import reference_similarity
from exams.models import Subject, Question, Exam, Submission, Answer
from exams.permissions import (
    IsInstructorOrAdmin, IsInstructorOrReadOnly, IsOwnerOrInstructor,
    CanWorkOnAttempt, IsQuestionAuthorOrAdmin, is_privileged,
)
from exams.services import AttemptService, ProctoringAggregator, GradeReportService
from exams.throttling import SubmissionRateThrottle, AutosaveRateThrottle, ViolationRateThrottle
from .serializers import (
    SubjectSerializer, QuestionSerializer, ExamSerializer, ExamQuestionSerializer,
    SubmissionSerializer, AttemptSerializer, SaveProgressSerializer, SubmitSerializer,
    ViolationSerializer, ManualGradeSerializer, GradeReportSerializer,
)

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (AttemptLimitExceeded, status.HTTP_403_FORBIDDEN),
    (ExamNotAvailable, status.HTTP_403_FORBIDDEN),
    (InvalidAttemptState, status.HTTP_409_CONFLICT),
    (QuestionNotInExam, status.HTTP_400_BAD_REQUEST),
    (ScoreOutOfRange, status.HTTP_400_BAD_REQUEST),
    (MalformedAnswerError, status.HTTP_400_BAD_REQUEST),
)


def error_response(exc: ExamError) -> Response:
    code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), status.HTTP_400_BAD_REQUEST)
    logger.info(f"Rejected request: {exc}")
    return Response(exc.as_dict(), status=code)


# =============================================================================
# SUBJECTS
# =============================================================================

@extend_schema_view(
    list=extend_schema(summary="List subjects"),
    create=extend_schema(summary="Create subject", description="**Requires Instructor or Admin role.**"),
)
@extend_schema(tags=['Subjects'])
class SubjectViewSet(viewsets.ModelViewSet):
    queryset = Subject.objects.all()
    serializer_class = SubjectSerializer
    permission_classes = [IsAuthenticated, IsInstructorOrReadOnly]
    filterset_fields = ['is_active']
    search_fields = ['name', 'description']


# =============================================================================
# QUESTIONS
# =============================================================================

@extend_schema_view(
    list=extend_schema(summary="List questions in the bank"),
    create=extend_schema(
        summary="Create question",
        description="""
Add a question to the bank. **Requires Instructor or Admin role.**

**Answer key per type:**
- `multiple_choice` - `correct_answer` is a letter, or `correct_answers` a list of letters
- `fill_blank` - blanks separated by `|`, e.g. `Paris|1889`
- `matching` - JSON list of `{"left", "right"}` pairs
- `ranking` - JSON list of items in the correct order
- `drag_drop` - `{"zones": [{"zone": ..., "items": [...]}]}`
- `short_answer`, `essay`, `stem` - optional reference answer, always reviewed by hand

Grading fields are locked once a submitted attempt has answered the question.
""",
        examples=[
            OpenApiExample(
                'Multiple Choice Example',
                value={
                    "subject": 1,
                    "question_type": "multiple_choice",
                    "question_text": "Which of these are prime?",
                    "options": ["2", "4", "5", "9"],
                    "correct_answers": ["A", "C"],
                    "points": 2
                },
                request_only=True
            ),
            OpenApiExample(
                'Fill in the Blank Example',
                value={
                    "subject": 1,
                    "question_type": "fill_blank",
                    "question_text": "The Eiffel Tower is in ___ and was finished in ___.",
                    "correct_answer": "Paris|1889",
                    "points": 2
                },
                request_only=True
            )
        ]
    ),
)
@extend_schema(tags=['Questions'])
class QuestionViewSet(viewsets.ModelViewSet):
    """Question bank. Only instructors and admins can browse it."""
    serializer_class = QuestionSerializer
    permission_classes = [IsAuthenticated, IsInstructorOrAdmin, IsQuestionAuthorOrAdmin]
    filterset_fields = ['subject', 'question_type', 'difficulty', 'is_active']
    search_fields = ['title', 'question_text']
    ordering_fields = ['created_at', 'points', 'difficulty']

    def get_queryset(self):
        return Question.objects.select_related('subject', 'instructor').order_by('-created_at')

    def perform_create(self, serializer):
        question = serializer.save(instructor=self.request.user)
        logger.info(f"User {self.request.user.pk} created question {question.pk} ({question.question_type})")

    def perform_destroy(self, instance):
        if instance.answers.exists():
            # Answers keep a protected reference; retire the question instead
            instance.is_active = False
            instance.save(update_fields=['is_active'])
            return
        instance.delete()


# =============================================================================
# EXAMS
# =============================================================================

@extend_schema_view(
    list=extend_schema(
        summary="List exams and homework",
        description="**Students** see only active exams. **Instructors/Admins** see all, including drafts."
    ),
    create=extend_schema(
        summary="Create exam or homework",
        description="Set `kind` to `homework` for an assignment. `attempts_allowed = -1` means unlimited.",
        examples=[
            OpenApiExample(
                'Request Example',
                value={
                    "kind": "exam",
                    "title": "Midterm",
                    "subject": 1,
                    "duration": 60,
                    "attempts_allowed": 2,
                    "status": "active",
                    "randomize_options": True,
                    "enable_proctoring": True,
                    "proctoring_warning_threshold": 3,
                    "available_from": "2026-01-15T09:00:00Z",
                    "available_until": "2026-01-15T18:00:00Z"
                },
                request_only=True
            )
        ]
    ),
)
@extend_schema(tags=['Exams'])
class ExamViewSet(viewsets.ModelViewSet):
    serializer_class = ExamSerializer
    permission_classes = [IsAuthenticated, IsInstructorOrReadOnly]
    filterset_fields = ['subject', 'status', 'kind']
    search_fields = ['title', 'description']
    ordering_fields = ['title', 'created_at', 'available_from', 'due_date']

    def get_queryset(self):
        queryset = Exam.objects.select_related('subject', 'instructor').annotate(
            question_count=Count('exam_questions')
        ).order_by('-created_at')
        if getattr(self, 'swagger_fake_view', False):
            return queryset
        if not is_privileged(self.request.user):
            queryset = queryset.filter(status=Exam.Status.ACTIVE)
        return queryset

    def perform_create(self, serializer):
        exam = serializer.save(instructor=self.request.user)
        logger.info(f"User {self.request.user.pk} created {exam.kind} {exam.pk}")

    @extend_schema(
        summary="List or add exam questions",
        description="GET lists the exam's questions in order. POST adds one, optionally overriding its points.",
        request=ExamQuestionSerializer,
        responses={200: ExamQuestionSerializer(many=True), 201: ExamQuestionSerializer},
    )
    @action(detail=True, methods=['get', 'post'], permission_classes=[IsAuthenticated, IsInstructorOrAdmin])
    def questions(self, request, pk=None):
        exam = self.get_object()
        if request.method == 'GET':
            return Response(ExamQuestionSerializer(exam.ordered_questions(), many=True).data)

        serializer = ExamQuestionSerializer(data=request.data, context={'exam': exam, 'request': request})
        serializer.is_valid(raise_exception=True)
        extra = {} if 'order' in request.data else {'order': exam.exam_questions.count() + 1}
        exam_question = serializer.save(exam=exam, **extra)
        return Response(ExamQuestionSerializer(exam_question).data, status=status.HTTP_201_CREATED)

    @extend_schema(
        summary="Start or resume an attempt",
        description="""
Opens a new attempt, or returns the caller's attempt that is still in progress.

**Rejections:**
- `403` outside the availability window, or when all attempts are used
""",
        request=None,
        responses={
            201: AttemptSerializer,
            200: AttemptSerializer,
            403: OpenApiResponse(description="Exam not available or attempt limit reached"),
        },
    )
    @action(detail=True, methods=['post'], permission_classes=[IsAuthenticated])
    def start(self, request, pk=None):
        exam = self.get_object()
        existing = Submission.objects.filter(
            exam=exam, student=request.user, status=Submission.Status.IN_PROGRESS
        ).exists()
        try:
            submission = AttemptService.start_attempt(exam, request.user)
        except ExamError as exc:
            return error_response(exc)
        return Response(
            AttemptSerializer(submission, context={'request': request}).data,
            status=status.HTTP_200_OK if existing else status.HTTP_201_CREATED
        )


# =============================================================================
# SUBMISSIONS
# =============================================================================

@extend_schema_view(
    list=extend_schema(summary="List attempts", description="Students see their own; instructors see attempts at their exams."),
    retrieve=extend_schema(summary="Get attempt details"),
)
@extend_schema(tags=['Submissions'])
class SubmissionViewSet(viewsets.ReadOnlyModelViewSet):
    """The attempt lifecycle: autosave, submit, proctoring and manual grading."""
    queryset = Submission.objects.none()
    serializer_class = SubmissionSerializer
    permission_classes = [IsAuthenticated, IsOwnerOrInstructor]
    filterset_fields = ['exam', 'status', 'is_highest_score']
    ordering_fields = ['started_at', 'submitted_at', 'total_score']

    def get_queryset(self):
        if getattr(self, 'swagger_fake_view', False):
            return Submission.objects.none()

        queryset = Submission.objects.select_related('exam', 'student').prefetch_related(
            Prefetch('answers', queryset=Answer.objects.select_related('question'))
        )
        user = self.request.user
        if user.is_staff or (hasattr(user, 'profile') and user.profile.is_admin):
            return queryset
        if hasattr(user, 'profile') and user.profile.is_instructor:
            return queryset.filter(exam__instructor=user)
        return queryset.filter(student=user)

    @extend_schema(
        summary="Autosave progress",
        description="Replaces the attempt's saved snapshot. Never creates an attempt.",
        request=SaveProgressSerializer,
        responses={200: SubmissionSerializer, 409: OpenApiResponse(description="Attempt is no longer in progress")},
    )
    @action(detail=True, methods=['post'], url_path='save-progress',
            permission_classes=[IsAuthenticated, CanWorkOnAttempt], throttle_classes=[AutosaveRateThrottle])
    def save_progress(self, request, pk=None):
        submission = self.get_object()
        serializer = SaveProgressSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            submission = AttemptService.save_progress(
                submission,
                serializer.validated_data['progress_data'],
                serializer.validated_data.get('time_remaining_seconds'),
            )
        except ExamError as exc:
            return error_response(exc)
        return Response(SubmissionSerializer(submission, context={'request': request}).data)

    @extend_schema(
        summary="Submit attempt",
        description="""
Finalises the attempt and auto-grades every question.

Status becomes `graded` when every question is auto-gradable, otherwise
`pending` until an instructor scores the free-text answers.
""",
        request=SubmitSerializer,
        responses={200: SubmissionSerializer, 409: OpenApiResponse(description="Attempt already submitted")},
        examples=[
            OpenApiExample(
                'Request Example',
                value={"answers": {"12": "B", "13": ["A", "C"], "14": "Paris|1889", "15": "Because..."}},
                request_only=True
            )
        ]
    )
    @action(detail=True, methods=['post'],
            permission_classes=[IsAuthenticated, CanWorkOnAttempt], throttle_classes=[SubmissionRateThrottle])
    def submit(self, request, pk=None):
        submission = self.get_object()
        serializer = SubmitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            submission = AttemptService.submit(submission, serializer.validated_data.get('answers'))
        except ExamError as exc:
            return error_response(exc)
        return Response(SubmissionSerializer(submission, context={'request': request}).data)

    @extend_schema(
        summary="Record proctoring violation",
        request=ViolationSerializer,
        responses={200: dict},
    )
    @action(detail=True, methods=['post'],
            permission_classes=[IsAuthenticated, CanWorkOnAttempt], throttle_classes=[ViolationRateThrottle])
    def violations(self, request, pk=None):
        submission = self.get_object()
        serializer = ViolationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            outcome = ProctoringAggregator.record_violation(
                submission, data['violation_type'], data.get('description', ''), data.get('timestamp')
            )
        except ExamError as exc:
            return error_response(exc)
        return Response({
            'submission_id': outcome.submission.pk,
            'status': outcome.submission.status,
            'total_violations': outcome.total_violations,
            'severity': outcome.severity,
            'warnings_remaining': outcome.warnings_remaining,
            'is_terminated_for_violations': outcome.terminated,
            'force_submitted': outcome.force_submitted,
        })

    @extend_schema(
        summary="Grade an answer by hand",
        request=ManualGradeSerializer,
        responses={200: SubmissionSerializer},
    )
    @action(detail=True, methods=['post'], permission_classes=[IsAuthenticated, IsInstructorOrAdmin, IsOwnerOrInstructor])
    def grade(self, request, pk=None):
        submission = self.get_object()
        serializer = ManualGradeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            AttemptService.grade_manually(
                submission, data['question_id'], data['score'], request.user, data.get('feedback', '')
            )
        except ExamError as exc:
            return error_response(exc)
        submission = self.get_queryset().get(pk=submission.pk)
        return Response(SubmissionSerializer(submission, context={'request': request}).data)

    @extend_schema(
        summary="Review an attempt",
        description="""
Answers rendered for a human reviewer, with any decode errors and, for
free-text answers, the similarity to the reference answer as a hint.
The hint never changes a score.
""",
        responses={200: dict},
    )
    @action(detail=True, methods=['get'], permission_classes=[IsAuthenticated, IsInstructorOrAdmin, IsOwnerOrInstructor])
    def review(self, request, pk=None):
        submission = self.get_object()
        answers = []
        for exam_question in submission.exam.ordered_questions():
            question = exam_question.question
            answer = next((a for a in submission.answers.all() if a.question_id == question.pk), None)
            answers.append(self._review_entry(question, answer))
        return Response({
            'submission_id': submission.pk,
            'student': submission.student.username,
            'status': submission.status,
            'total_score': submission.total_score,
            'max_score': submission.max_score,
            'proctoring': ProctoringAggregator.summary(submission),
            'answers': answers,
        })

    def _review_entry(self, question, answer):
        entry = {
            'question_id': question.pk,
            'question_type': question.question_type,
            'question_text': question.question_text,
            'answer_id': None,
            'response': "(no answer)",
            'error': '',
            'score': None,
            'max_score': None,
            'requires_manual_review': False,
            'feedback': '',
            'reference_similarity': None,
        }
        if answer is None:
            return entry

        entry.update({
            'answer_id': answer.pk,
            'score': answer.score,
            'max_score': answer.max_score,
            'requires_manual_review': answer.requires_manual_review,
            'feedback': answer.feedback,
        })
        fmt = question.answer_format
        try:
            response = answer.response
            entry['response'] = fmt.render_response(response, question.parsed_options)
        except MalformedAnswerError as exc:
            entry['response'] = answer.answer_text
            entry['error'] = exc.message
            return entry

        if not is_auto_gradable(question.question_type):
            try:
                reference = question.answer_key
            except MalformedAnswerError:
                reference = None
            if reference:
                entry['reference_similarity'] = reference_similarity(response, reference)
        return entry

    @extend_schema(summary="Attempts waiting for manual review", responses={200: SubmissionSerializer(many=True)})
    @action(detail=False, methods=['get'], url_path='review-queue', permission_classes=[IsAuthenticated, IsInstructorOrAdmin])
    def review_queue(self, request):
        pending = self.get_queryset().filter(status=Submission.Status.PENDING).order_by('submitted_at')
        page = self.paginate_queryset(pending)
        if page is not None:
            return self.get_paginated_response(SubmissionSerializer(page, many=True, context={'request': request}).data)
        return Response(SubmissionSerializer(pending, many=True, context={'request': request}).data)


# =============================================================================
# GRADES
# =============================================================================

@extend_schema(tags=['Grades'])
class MyGradesView(APIView):
    """Per-subject final and letter grades for the caller."""
    permission_classes = [IsAuthenticated]

    @extend_schema(summary="My grade report", responses={200: GradeReportSerializer(many=True)})
    def get(self, request):
        report = GradeReportService.student_report(request.user)
        return Response(GradeReportSerializer(report, many=True).data)


@extend_schema(tags=['Grades'])
class StudentGradesView(APIView):
    """Grade report for one student, for instructors."""
    permission_classes = [IsAuthenticated, IsInstructorOrAdmin]

    @extend_schema(summary="Student grade report", responses={200: GradeReportSerializer(many=True)})
    def get(self, request, student_id):
        student = get_object_or_404(User, pk=student_id)
        report = GradeReportService.student_report(student)
        return Response(GradeReportSerializer(report, many=True).data)
