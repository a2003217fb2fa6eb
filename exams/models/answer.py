from django.db import models
from django.contrib.auth.models import User

from exams.grading import QuestionType


class Answer(models.Model):
    submission = models.ForeignKey(
        'Submission',
        on_delete=models.CASCADE,
        related_name='answers',
        db_index=True
    )
    question = models.ForeignKey(
        'Question',
        on_delete=models.PROTECT,
        related_name='answers',
        db_index=True
    )

    answer_text = models.TextField(blank=True)
    selected_option = models.CharField(max_length=5, blank=True)
    selected_options = models.JSONField(null=True, blank=True)

    score = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    max_score = models.DecimalField(max_digits=6, decimal_places=2)
    requires_manual_review = models.BooleanField(default=False)
    feedback = models.TextField(blank=True)
    graded_at = models.DateTimeField(null=True, blank=True)
    graded_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='graded_answers'
    )
    answered_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['submission', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['submission', 'question'],
                name='unique_submission_question'
            )
        ]

    def __str__(self):
        return f"Answer to Q{self.question_id} in submission {self.submission_id}"

    @property
    def raw_response(self):
        """The stored response in the form the codec decodes."""
        if self.question.question_type == QuestionType.MULTIPLE_CHOICE:
            if self.selected_options:
                return list(self.selected_options)
            return self.selected_option or self.answer_text
        return self.answer_text

    @property
    def response(self):
        return self.question.answer_format.decode_response(self.raw_response)

    def set_response(self, response):
        fmt = self.question.answer_format
        if self.question.question_type == QuestionType.MULTIPLE_CHOICE:
            columns = fmt.response_to_columns(response)
            self.selected_option = columns['selected_option']
            self.selected_options = columns['selected_options']
            self.answer_text = columns['answer_text']
        else:
            self.answer_text = fmt.encode_response(response) if response is not None else ''
