from decimal import Decimal

from django.db import models
from django.contrib.auth.models import User
from django.core.validators import MinValueValidator

from exams.exceptions import MalformedAnswerError
from exams.grading import QuestionDefinition, QuestionType, codec


class Question(models.Model):
    QuestionType = QuestionType

    class Difficulty(models.TextChoices):
        EASY = 'easy', 'Easy'
        MEDIUM = 'medium', 'Medium'
        HARD = 'hard', 'Hard'

    # Fields that decide how an answer is scored. Frozen once a submitted
    # attempt has answered the question.
    GRADING_FIELDS = ('question_type', 'options', 'correct_answer', 'correct_answers', 'points')

    instructor = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='questions'
    )
    subject = models.ForeignKey(
        'Subject',
        on_delete=models.PROTECT,
        related_name='questions',
        db_index=True
    )
    title = models.CharField(max_length=300, blank=True)
    question_text = models.TextField()
    question_type = models.CharField(
        max_length=20,
        choices=QuestionType.choices,
        db_index=True
    )
    options = models.JSONField(null=True, blank=True)
    correct_answer = models.TextField(blank=True)
    correct_answers = models.JSONField(null=True, blank=True)
    explanation = models.TextField(blank=True)
    difficulty = models.CharField(
        max_length=10,
        choices=Difficulty.choices,
        default=Difficulty.MEDIUM
    )
    points = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['subject', 'question_type'], name='exams_quest_subject_8c1f0e_idx'),
        ]

    def __str__(self):
        return self.title or self.question_text[:50]

    @property
    def answer_format(self):
        return codec.get_format(self.question_type)

    @property
    def parsed_options(self):
        return self.answer_format.decode_options(self.options)

    @property
    def answer_key(self):
        fmt = self.answer_format
        if self.question_type == QuestionType.MULTIPLE_CHOICE:
            return fmt.key_from_columns(self.correct_answer, self.correct_answers)
        return fmt.decode_key(self.correct_answer)

    def set_options(self, options):
        self.options = self.answer_format.encode_options(options)

    def set_answer_key(self, key):
        fmt = self.answer_format
        if self.question_type == QuestionType.MULTIPLE_CHOICE:
            columns = fmt.key_to_columns(key)
            self.correct_answer = columns['correct_answer']
            self.correct_answers = columns['correct_answers']
        else:
            self.correct_answer = fmt.encode_key(key)
            self.correct_answers = None

    def to_definition(self, points=None) -> QuestionDefinition:
        """Canonical question for the grading engine; ``points`` is the exam's override."""
        options, key, key_error = None, None, ''
        try:
            options = self.parsed_options
            key = self.answer_key
        except MalformedAnswerError as exc:
            key_error = exc.message
        return QuestionDefinition(
            question_id=self.pk,
            question_type=self.question_type,
            max_score=Decimal(points if points is not None else self.points),
            options=options,
            key=key,
            key_error=key_error,
        )

    def is_grading_locked(self) -> bool:
        if self.pk is None:
            return False
        return self.answers.filter(submission__submitted_at__isnull=False).exists()
