from django.contrib.auth.models import User
from rest_framework import serializers
from drf_spectacular.utils import extend_schema_field

from exams.exceptions import MalformedAnswerError
from exams.grading import QuestionType, codec
from exams.models import Subject, Question, Exam, ExamQuestion, Submission, Answer
from exams.permissions import is_privileged
from exams.services import AttemptService, ViolationType
from exams.services.proctoring import ProctoringAggregator
from exams.services.shuffling import order_exam_questions, presented_options


class UserSerializer(serializers.ModelSerializer):
    role = serializers.CharField(source='profile.role', read_only=True)

    class Meta:
        model = User
        fields = ['id', 'username', 'email', 'first_name', 'last_name', 'role']
        read_only_fields = fields


class SubjectSerializer(serializers.ModelSerializer):
    class Meta:
        model = Subject
        fields = ['id', 'name', 'description', 'is_active', 'created_at']
        read_only_fields = ['created_at']


# =============================================================================
# QUESTIONS
# =============================================================================

class QuestionSerializer(serializers.ModelSerializer):
    instructor = serializers.PrimaryKeyRelatedField(read_only=True)
    is_grading_locked = serializers.SerializerMethodField()

    class Meta:
        model = Question
        fields = [
            'id', 'instructor', 'subject', 'title', 'question_text', 'question_type',
            'options', 'correct_answer', 'correct_answers', 'explanation',
            'difficulty', 'points', 'is_active', 'is_grading_locked',
            'created_at', 'updated_at'
        ]
        read_only_fields = ['id', 'created_at', 'updated_at']

    @extend_schema_field(serializers.BooleanField())
    def get_is_grading_locked(self, obj) -> bool:
        return obj.is_grading_locked()

    def validate(self, data):
        instance = self.instance
        if instance is not None and instance.is_grading_locked():
            changed = [
                name for name in Question.GRADING_FIELDS
                if name in data and data[name] != getattr(instance, name)
            ]
            if changed:
                raise serializers.ValidationError({
                    name: "Cannot change how this question is graded after students have submitted answers."
                    for name in changed
                })

        def current(name, default=None):
            if name in data:
                return data[name]
            return getattr(instance, name) if instance is not None else default

        question_type = current('question_type')
        try:
            fmt = codec.get_format(question_type)
            options = fmt.decode_options(current('options'))
            if question_type == QuestionType.MULTIPLE_CHOICE:
                key = fmt.key_from_columns(current('correct_answer', ''), current('correct_answers'))
            else:
                key = fmt.decode_key(current('correct_answer', ''))
        except MalformedAnswerError as exc:
            raise serializers.ValidationError({'correct_answer': exc.message})

        if question_type == QuestionType.MULTIPLE_CHOICE:
            if len(options) < 2:
                raise serializers.ValidationError({'options': "Multiple choice questions need at least two options."})
            if key is None:
                raise serializers.ValidationError({'correct_answer': "A correct option is required."})
            letters = key if isinstance(key, frozenset) else {key}
            if any(codec.letter_to_index(letter) >= len(options) for letter in letters):
                raise serializers.ValidationError({'correct_answer': "Correct answer refers to a missing option."})
        elif question_type in (QuestionType.FILL_BLANK, QuestionType.MATCHING,
                               QuestionType.RANKING, QuestionType.DRAG_DROP) and not key:
            raise serializers.ValidationError({'correct_answer': "An answer key is required."})
        return data

    def to_representation(self, instance):
        data = super().to_representation(instance)
        request = self.context.get('request')
        if not (request and is_privileged(request.user)):
            data.pop('correct_answer', None)
            data.pop('correct_answers', None)
            data.pop('explanation', None)
        return data


class AttemptQuestionSerializer(serializers.Serializer):
    """A question as shown to a student during an attempt: no keys, options in presented order."""
    id = serializers.IntegerField(source='question.id')
    title = serializers.CharField(source='question.title')
    question_text = serializers.CharField(source='question.question_text')
    question_type = serializers.CharField(source='question.question_type')
    points = serializers.IntegerField(source='effective_points')
    options = serializers.SerializerMethodField()

    @extend_schema_field(serializers.JSONField(allow_null=True))
    def get_options(self, obj):
        question = obj.question
        presentation = self.context.get('presentation')
        question_type = question.question_type
        try:
            if question_type == QuestionType.MULTIPLE_CHOICE:
                return presented_options(question, presentation)
            if question_type == QuestionType.MATCHING:
                pairs = question.parsed_options
                return {
                    'left': [p.left for p in pairs],
                    'right': sorted(p.right for p in pairs),
                }
            if question_type == QuestionType.RANKING:
                return sorted(question.parsed_options)
            if question_type == QuestionType.DRAG_DROP:
                return question.answer_format.encode_options(question.parsed_options)
        except MalformedAnswerError:
            return None
        return None


# =============================================================================
# EXAMS
# =============================================================================

class ExamQuestionSerializer(serializers.ModelSerializer):
    effective_points = serializers.IntegerField(read_only=True)

    class Meta:
        model = ExamQuestion
        fields = ['id', 'question', 'order', 'points', 'effective_points']

    def validate_question(self, question):
        exam = self.context.get('exam')
        if exam and ExamQuestion.objects.filter(exam=exam, question=question).exists():
            raise serializers.ValidationError("This question is already part of the exam.")
        return question


class ExamSerializer(serializers.ModelSerializer):
    instructor = serializers.PrimaryKeyRelatedField(read_only=True)
    subject_name = serializers.CharField(source='subject.name', read_only=True)
    question_count = serializers.IntegerField(read_only=True)
    total_points = serializers.SerializerMethodField()

    class Meta:
        model = Exam
        fields = [
            'id', 'kind', 'title', 'description', 'instructor', 'subject', 'subject_name',
            'duration', 'attempts_allowed', 'status',
            'randomize_questions', 'randomize_options', 'show_results_immediately',
            'available_from', 'available_until', 'due_date',
            'enable_proctoring', 'proctoring_warning_threshold', 'proctoring_auto_terminate',
            'question_count', 'total_points', 'created_at', 'updated_at'
        ]
        read_only_fields = ['created_at', 'updated_at']

    @extend_schema_field(serializers.IntegerField())
    def get_total_points(self, obj) -> int:
        return obj.get_total_points()

    def validate(self, data):
        available_from = data.get('available_from', getattr(self.instance, 'available_from', None))
        available_until = data.get('available_until', getattr(self.instance, 'available_until', None))
        if available_from and available_until and available_from >= available_until:
            raise serializers.ValidationError({'available_until': "Must be after available_from."})
        return data


# =============================================================================
# SUBMISSIONS
# =============================================================================

class AnswerSerializer(serializers.ModelSerializer):
    question_type = serializers.CharField(source='question.question_type', read_only=True)
    rendered_response = serializers.SerializerMethodField()

    class Meta:
        model = Answer
        fields = [
            'id', 'question', 'question_type', 'answer_text', 'selected_option', 'selected_options',
            'rendered_response', 'score', 'max_score', 'requires_manual_review',
            'feedback', 'graded_at', 'answered_at'
        ]
        read_only_fields = fields

    @extend_schema_field(serializers.CharField())
    def get_rendered_response(self, obj) -> str:
        question = obj.question
        try:
            return question.answer_format.render_response(obj.response, question.parsed_options)
        except MalformedAnswerError as exc:
            return f"(unreadable answer: {exc.message})"


class SubmissionSerializer(serializers.ModelSerializer):
    exam_title = serializers.CharField(source='exam.title', read_only=True)
    exam_kind = serializers.CharField(source='exam.kind', read_only=True)
    student_username = serializers.CharField(source='student.username', read_only=True)
    percentage = serializers.FloatField(read_only=True)
    time_remaining = serializers.SerializerMethodField()
    proctoring = serializers.SerializerMethodField()
    answers = AnswerSerializer(many=True, read_only=True)

    class Meta:
        model = Submission
        fields = [
            'id', 'exam', 'exam_title', 'exam_kind', 'student', 'student_username',
            'attempt_number', 'status', 'started_at', 'submitted_at', 'graded_at',
            'time_taken_seconds', 'total_score', 'max_score', 'percentage',
            'is_late', 'is_highest_score', 'last_saved_at', 'time_remaining',
            'proctoring', 'answers'
        ]
        read_only_fields = fields

    @extend_schema_field(serializers.IntegerField(allow_null=True))
    def get_time_remaining(self, obj):
        return AttemptService.time_remaining(obj)

    @extend_schema_field(serializers.DictField())
    def get_proctoring(self, obj) -> dict:
        summary = ProctoringAggregator.summary(obj)
        summary.pop('violations')
        return summary

    def to_representation(self, instance):
        data = super().to_representation(instance)
        request = self.context.get('request')
        if request and is_privileged(request.user):
            return data
        results_visible = (
            instance.status == Submission.Status.GRADED
            or (instance.exam.show_results_immediately and not instance.is_in_progress)
        )
        if not results_visible:
            data['total_score'] = None
            data['percentage'] = None
            for answer in data.get('answers', []):
                answer['score'] = None
                answer['feedback'] = ''
        return data


class AttemptSerializer(SubmissionSerializer):
    """An attempt as returned when it is started or resumed."""
    questions = serializers.SerializerMethodField()
    progress_data = serializers.JSONField(read_only=True)

    class Meta(SubmissionSerializer.Meta):
        fields = SubmissionSerializer.Meta.fields + ['progress_data', 'questions']
        read_only_fields = fields

    @extend_schema_field(AttemptQuestionSerializer(many=True))
    def get_questions(self, obj):
        ordered = order_exam_questions(obj.exam.ordered_questions(), obj.presentation)
        return AttemptQuestionSerializer(
            ordered, many=True, context={**self.context, 'presentation': obj.presentation}
        ).data


class SaveProgressSerializer(serializers.Serializer):
    progress_data = serializers.JSONField(
        help_text="Opaque autosave snapshot, e.g. {'answers': {...}, 'current_question': 3}"
    )
    time_remaining_seconds = serializers.IntegerField(required=False, allow_null=True, min_value=0)

    def validate_progress_data(self, value):
        if not isinstance(value, dict):
            raise serializers.ValidationError("Must be an object.")
        return value


class SubmitSerializer(serializers.Serializer):
    answers = serializers.DictField(
        child=serializers.JSONField(allow_null=True),
        required=False,
        allow_null=True,
        help_text="Question id -> answer. Omit to submit the autosaved answers."
    )


class ViolationSerializer(serializers.Serializer):
    violation_type = serializers.ChoiceField(choices=ViolationType.choices)
    description = serializers.CharField(required=False, allow_blank=True, default='', max_length=500)
    timestamp = serializers.DateTimeField(required=False, allow_null=True)


class ManualGradeSerializer(serializers.Serializer):
    question_id = serializers.IntegerField()
    score = serializers.DecimalField(max_digits=6, decimal_places=2)
    feedback = serializers.CharField(required=False, allow_blank=True, default='')


class GradeReportSerializer(serializers.Serializer):
    subject_id = serializers.IntegerField()
    subject_name = serializers.CharField()
    homework_score = serializers.DecimalField(max_digits=9, decimal_places=2)
    homework_max_score = serializers.DecimalField(max_digits=9, decimal_places=2)
    homework_percentage = serializers.DecimalField(max_digits=6, decimal_places=2)
    exam_score = serializers.DecimalField(max_digits=9, decimal_places=2)
    exam_max_score = serializers.DecimalField(max_digits=9, decimal_places=2)
    exam_percentage = serializers.DecimalField(max_digits=6, decimal_places=2)
    final_grade = serializers.DecimalField(max_digits=6, decimal_places=2)
    letter_grade = serializers.CharField()
