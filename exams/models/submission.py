from django.db import models
from django.contrib.auth.models import User
from django.utils import timezone


class Submission(models.Model):
    """One student's attempt at an exam or homework assignment."""

    class Status(models.TextChoices):
        IN_PROGRESS = 'in_progress', 'In Progress'
        SUBMITTED = 'submitted', 'Submitted'
        PENDING = 'pending', 'Pending Review'
        GRADED = 'graded', 'Graded'

    student = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='submissions',
        db_index=True
    )
    exam = models.ForeignKey(
        'Exam',
        on_delete=models.CASCADE,
        related_name='submissions',
        db_index=True
    )
    attempt_number = models.PositiveIntegerField(default=1)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.IN_PROGRESS,
        db_index=True
    )

    started_at = models.DateTimeField(default=timezone.now)
    submitted_at = models.DateTimeField(null=True, blank=True)
    graded_at = models.DateTimeField(null=True, blank=True)
    time_taken_seconds = models.PositiveIntegerField(null=True, blank=True)

    total_score = models.DecimalField(max_digits=7, decimal_places=2, null=True, blank=True)
    max_score = models.DecimalField(max_digits=7, decimal_places=2, null=True, blank=True)
    is_late = models.BooleanField(default=False)
    is_highest_score = models.BooleanField(default=False)

    # Autosave
    progress_data = models.JSONField(null=True, blank=True)
    last_saved_at = models.DateTimeField(null=True, blank=True)
    time_remaining_seconds = models.PositiveIntegerField(null=True, blank=True)

    proctoring_data = models.JSONField(default=dict, blank=True)
    presentation = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ['-started_at']
        indexes = [
            models.Index(fields=['student', 'exam'], name='exams_submi_student_4b2e8a_idx'),
            models.Index(fields=['exam', 'status'], name='exams_submi_exam_id_71d0c3_idx'),
            models.Index(fields=['submitted_at'], name='exams_submi_submitt_9f3a62_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['student', 'exam', 'attempt_number'],
                name='unique_student_exam_attempt'
            )
        ]

    def __str__(self):
        return f"{self.student.username} - {self.exam.title} (Attempt {self.attempt_number})"

    @property
    def is_in_progress(self):
        return self.status == self.Status.IN_PROGRESS

    @property
    def score_ratio(self) -> float:
        if not self.max_score:
            return 0.0
        return float((self.total_score or 0) / self.max_score)

    @property
    def percentage(self):
        if self.total_score is None:
            return None
        return round(self.score_ratio * 100, 2)

    @property
    def is_terminated_for_violations(self):
        return bool((self.proctoring_data or {}).get('is_terminated_for_violations'))
