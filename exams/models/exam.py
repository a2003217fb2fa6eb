from django.db import models
from django.contrib.auth.models import User
from django.core.validators import MinValueValidator
from django.utils import timezone

UNLIMITED_ATTEMPTS = -1


class Exam(models.Model):
    """An exam or a homework assignment: an ordered set of questions plus attempt policy."""

    class Kind(models.TextChoices):
        EXAM = 'exam', 'Exam'
        HOMEWORK = 'homework', 'Homework'

    class Status(models.TextChoices):
        DRAFT = 'draft', 'Draft'
        ACTIVE = 'active', 'Active'
        COMPLETED = 'completed', 'Completed'
        ARCHIVED = 'archived', 'Archived'

    instructor = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='exams'
    )
    subject = models.ForeignKey(
        'Subject',
        on_delete=models.PROTECT,
        related_name='exams',
        db_index=True
    )
    kind = models.CharField(max_length=10, choices=Kind.choices, default=Kind.EXAM, db_index=True)
    title = models.CharField(max_length=300)
    description = models.TextField(blank=True)
    duration = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Time budget in minutes. Leave blank for untimed work."
    )
    attempts_allowed = models.IntegerField(
        default=1,
        validators=[MinValueValidator(UNLIMITED_ATTEMPTS)],
        help_text="-1 for unlimited attempts"
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.DRAFT,
        db_index=True
    )
    randomize_questions = models.BooleanField(default=False)
    randomize_options = models.BooleanField(default=False)
    show_results_immediately = models.BooleanField(default=False)

    # Scheduling
    available_from = models.DateTimeField(null=True, blank=True)
    available_until = models.DateTimeField(null=True, blank=True)
    due_date = models.DateTimeField(null=True, blank=True, help_text="Submissions after this are flagged late")

    # Proctoring
    enable_proctoring = models.BooleanField(default=False)
    proctoring_warning_threshold = models.PositiveIntegerField(default=3, validators=[MinValueValidator(1)])
    proctoring_auto_terminate = models.BooleanField(default=True)

    questions = models.ManyToManyField('Question', through='ExamQuestion', related_name='exams')

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'subject'], name='exams_exam_status_3a9d2b_idx'),
            models.Index(fields=['kind', 'status'], name='exams_exam_kind_5e7c41_idx'),
        ]

    def __str__(self):
        return self.title

    @property
    def has_unlimited_attempts(self):
        return self.attempts_allowed == UNLIMITED_ATTEMPTS

    def allows_attempt(self, attempt_number: int) -> bool:
        return self.has_unlimited_attempts or attempt_number <= self.attempts_allowed

    def is_open(self, now=None) -> bool:
        """Inside the [available_from, available_until] window."""
        now = now or timezone.now()
        if self.available_from and now < self.available_from:
            return False
        if self.available_until and now > self.available_until:
            return False
        return True

    def is_late(self, when) -> bool:
        deadline = self.due_date or (self.available_until if self.kind == self.Kind.HOMEWORK else None)
        return bool(deadline and when > deadline)

    def ordered_questions(self):
        return self.exam_questions.select_related('question').order_by('order', 'id')

    def get_total_points(self):
        return sum(eq.effective_points for eq in self.ordered_questions())


class ExamQuestion(models.Model):
    exam = models.ForeignKey('Exam', on_delete=models.CASCADE, related_name='exam_questions')
    question = models.ForeignKey('Question', on_delete=models.CASCADE, related_name='exam_questions')
    order = models.PositiveIntegerField(default=0)
    points = models.PositiveIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(1)],
        help_text="Overrides the question's own points for this exam"
    )

    class Meta:
        ordering = ['order', 'id']
        constraints = [
            models.UniqueConstraint(fields=['exam', 'question'], name='unique_exam_question')
        ]

    def __str__(self):
        return f"{self.exam.title} #{self.order}: {self.question}"

    @property
    def effective_points(self):
        return self.points if self.points is not None else self.question.points

    def to_definition(self):
        return self.question.to_definition(points=self.effective_points)
