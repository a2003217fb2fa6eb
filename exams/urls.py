from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .api.views import (
    SubjectViewSet, QuestionViewSet, ExamViewSet, SubmissionViewSet,
    MyGradesView, StudentGradesView,
)

# Router for ViewSets
router = DefaultRouter()
router.register(r'subjects', SubjectViewSet, basename='subject')
router.register(r'questions', QuestionViewSet, basename='question')
router.register(r'exams', ExamViewSet, basename='exam')
router.register(r'submissions', SubmissionViewSet, basename='submission')

urlpatterns = [
    # ============================================
    # GRADES
    # ============================================
    path('grades/me/', MyGradesView.as_view(), name='my-grades'),
    path('grades/students/<int:student_id>/', StudentGradesView.as_view(), name='student-grades'),

    # ============================================
    # CORE API ROUTES (ViewSets)
    # ============================================
    path('', include(router.urls)),
]
