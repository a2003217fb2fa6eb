"""
Management command to seed demo data: users, a subject, one question of
every type, an exam and a homework assignment.
"""
from django.core.management.base import BaseCommand
from django.contrib.auth.models import User
from django.db import transaction
from rest_framework.authtoken.models import Token

from exams.grading import QuestionType
from exams.grading.codec import DragDropLayout, DropZone, MatchPair
from exams.models import Subject, Question, Exam, ExamQuestion, UserProfile


DEMO_USERS = (
    ('student', 'student123', UserProfile.Role.STUDENT, {}),
    ('instructor', 'instructor123', UserProfile.Role.INSTRUCTOR, {'is_staff': True}),
    ('admin', 'admin123', UserProfile.Role.ADMIN, {'is_staff': True, 'is_superuser': True}),
)


class Command(BaseCommand):
    help = 'Seed demo users, questions, an exam and a homework assignment'

    def _user(self, username, password, role, extra):
        user, created = User.objects.get_or_create(
            username=username,
            defaults={'email': f'{username}@example.com', 'is_active': True, **extra}
        )
        if created:
            user.set_password(password)
            user.save()
            user.profile.role = role
            user.profile.save()
            self.stdout.write(self.style.SUCCESS(f'✓ Created {role}: {username} / {password}'))
        else:
            self.stdout.write(f'  {username} already exists')
        token, _ = Token.objects.get_or_create(user=user)
        return user, token

    def _question(self, instructor, subject, question_type, text, options=None, key=None, points=1):
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

    @transaction.atomic
    def handle(self, *args, **options):
        self.stdout.write(self.style.NOTICE('\nSeeding ExamFlow demo data...\n'))

        users = {username: self._user(username, password, role, extra)
                 for username, password, role, extra in DEMO_USERS}
        instructor = users['instructor'][0]

        subject, _ = Subject.objects.get_or_create(
            name='General Science',
            defaults={'description': 'Demo subject'}
        )

        if Exam.objects.filter(subject=subject).exists():
            self.stdout.write('  Demo exams already exist')
        else:
            questions = [
                self._question(instructor, subject, QuestionType.MULTIPLE_CHOICE,
                               'Which of these are prime numbers?',
                               ['2', '4', '5', '9'], frozenset({'A', 'C'}), points=2),
                self._question(instructor, subject, QuestionType.FILL_BLANK,
                               'The Eiffel Tower is in ___ and was completed in ___.',
                               key=['Paris', '1889'], points=2),
                self._question(instructor, subject, QuestionType.MATCHING,
                               'Match each element to its symbol.',
                               [MatchPair('Gold', 'Au'), MatchPair('Iron', 'Fe'), MatchPair('Sodium', 'Na')],
                               [MatchPair('Gold', 'Au'), MatchPair('Iron', 'Fe'), MatchPair('Sodium', 'Na')],
                               points=3),
                self._question(instructor, subject, QuestionType.RANKING,
                               'Order the planets by distance from the Sun.',
                               ['Mercury', 'Venus', 'Earth'], ['Mercury', 'Venus', 'Earth'], points=3),
                self._question(instructor, subject, QuestionType.DRAG_DROP,
                               'Sort the animals.',
                               DragDropLayout(zones=['Mammals', 'Birds'], items=['Whale', 'Eagle', 'Bat']),
                               [DropZone('Mammals', ['Whale', 'Bat']), DropZone('Birds', ['Eagle'])],
                               points=2),
                self._question(instructor, subject, QuestionType.ESSAY,
                               'Explain why the sky is blue.',
                               key='Sunlight is scattered by air molecules and shorter blue wavelengths scatter the most.',
                               points=5),
            ]

            exam = Exam.objects.create(
                instructor=instructor,
                subject=subject,
                kind=Exam.Kind.EXAM,
                title='Science Midterm',
                duration=45,
                attempts_allowed=2,
                status=Exam.Status.ACTIVE,
                randomize_options=True,
                enable_proctoring=True,
                proctoring_warning_threshold=3,
            )
            homework = Exam.objects.create(
                instructor=instructor,
                subject=subject,
                kind=Exam.Kind.HOMEWORK,
                title='Science Homework 1',
                attempts_allowed=-1,
                status=Exam.Status.ACTIVE,
            )
            for order, question in enumerate(questions, start=1):
                ExamQuestion.objects.create(exam=exam, question=question, order=order)
            for order, question in enumerate(questions[:3], start=1):
                ExamQuestion.objects.create(exam=homework, question=question, order=order)
            self.stdout.write(self.style.SUCCESS(
                f'✓ {exam.title} ({len(questions)} questions) and {homework.title} (3 questions)'
            ))

        self.stdout.write(self.style.SUCCESS('\nDemo data ready.'))
        self.stdout.write('\nAPI Tokens:')
        for username, (_, token) in users.items():
            self.stdout.write(f'  {username:<11} {token.key}')
        self.stdout.write('\nSwagger UI: http://localhost:8000/api/docs/')
