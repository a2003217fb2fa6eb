from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.contrib.auth.models import User
from .models import Subject, Question, Exam, ExamQuestion, Submission, Answer, UserProfile


class UserProfileInline(admin.StackedInline):
    model = UserProfile
    can_delete = False
    verbose_name_plural = 'Profile'


class UserAdmin(BaseUserAdmin):
    inlines = [UserProfileInline]
    list_display = ['username', 'email', 'first_name', 'last_name', 'get_role', 'is_staff']
    list_filter = ['is_staff', 'is_superuser', 'is_active', 'profile__role']

    def get_role(self, obj):
        return obj.profile.get_role_display() if hasattr(obj, 'profile') else '-'
    get_role.short_description = 'Role'


admin.site.unregister(User)
admin.site.register(User, UserAdmin)


class ExamQuestionInline(admin.TabularInline):
    model = ExamQuestion
    extra = 1
    fields = ['order', 'question', 'points']
    autocomplete_fields = ['question']


class AnswerInline(admin.TabularInline):
    model = Answer
    extra = 0
    readonly_fields = [
        'question', 'answer_text', 'selected_option', 'selected_options',
        'score', 'max_score', 'requires_manual_review', 'feedback', 'graded_by'
    ]
    can_delete = False


@admin.register(Subject)
class SubjectAdmin(admin.ModelAdmin):
    list_display = ['name', 'is_active', 'created_at']
    list_filter = ['is_active']
    search_fields = ['name']


@admin.register(Question)
class QuestionAdmin(admin.ModelAdmin):
    list_display = ['id', 'subject', 'question_type', 'text_preview', 'points', 'difficulty', 'is_active']
    list_filter = ['question_type', 'difficulty', 'subject', 'is_active']
    search_fields = ['title', 'question_text']

    def text_preview(self, obj):
        return obj.question_text[:50] + '...' if len(obj.question_text) > 50 else obj.question_text
    text_preview.short_description = 'Question'

    def get_readonly_fields(self, request, obj=None):
        if obj is not None and obj.is_grading_locked():
            return list(Question.GRADING_FIELDS)
        return []


@admin.register(Exam)
class ExamAdmin(admin.ModelAdmin):
    list_display = ['title', 'kind', 'subject', 'status', 'duration', 'attempts_allowed', 'enable_proctoring', 'created_at']
    list_filter = ['kind', 'status', 'subject', 'enable_proctoring']
    search_fields = ['title', 'description']
    inlines = [ExamQuestionInline]
    readonly_fields = ['created_at', 'updated_at']
    fieldsets = (
        (None, {'fields': ('kind', 'title', 'description', 'subject', 'instructor', 'status')}),
        ('Attempts', {'fields': ('duration', 'attempts_allowed', 'randomize_questions', 'randomize_options', 'show_results_immediately')}),
        ('Schedule', {'fields': ('available_from', 'available_until', 'due_date')}),
        ('Proctoring', {'fields': ('enable_proctoring', 'proctoring_warning_threshold', 'proctoring_auto_terminate')}),
        ('Metadata', {'fields': ('created_at', 'updated_at'), 'classes': ('collapse',)}),
    )


@admin.register(Submission)
class SubmissionAdmin(admin.ModelAdmin):
    list_display = ['id', 'student', 'exam', 'attempt_number', 'status', 'total_score', 'max_score', 'is_late', 'is_highest_score', 'terminated_display', 'submitted_at']
    list_filter = ['status', 'is_late', 'is_highest_score', 'exam']
    search_fields = ['student__username', 'exam__title']
    inlines = [AnswerInline]
    readonly_fields = ['started_at', 'submitted_at', 'graded_at', 'time_taken_seconds', 'last_saved_at', 'proctoring_data', 'presentation']
    fieldsets = (
        (None, {'fields': ('student', 'exam', 'status', 'attempt_number')}),
        ('Results', {'fields': ('total_score', 'max_score', 'is_late', 'is_highest_score')}),
        ('Progress', {'fields': ('progress_data', 'last_saved_at', 'time_remaining_seconds'), 'classes': ('collapse',)}),
        ('Proctoring', {'fields': ('proctoring_data', 'presentation'), 'classes': ('collapse',)}),
        ('Timestamps', {'fields': ('started_at', 'submitted_at', 'graded_at', 'time_taken_seconds'), 'classes': ('collapse',)}),
    )

    def terminated_display(self, obj):
        return obj.is_terminated_for_violations
    terminated_display.boolean = True
    terminated_display.short_description = 'Terminated'


@admin.register(Answer)
class AnswerAdmin(admin.ModelAdmin):
    list_display = ['id', 'submission', 'question', 'score', 'max_score', 'requires_manual_review', 'graded_by']
    list_filter = ['requires_manual_review', 'question__question_type']
    readonly_fields = ['answered_at']
