"""
Deterministic per-attempt shuffling of question order and MCQ option order.

Each (exam, student, attempt) triple gets its own HMAC-SHA256 seed, so a
student who resumes an attempt sees the same order again while two students
(or two attempts) see different ones. Option permutations are stored on the
submission so the letters a student picked can be mapped back to the
canonical letters the answer key uses.
"""
import hashlib
import hmac
import logging
from typing import Dict, List, Sequence, Tuple

from django.conf import settings

from exams.grading import QuestionType
from exams.grading.codec import index_to_letter, letter_to_index

logger = logging.getLogger(__name__)


def generate_seed(exam_id, student_id, attempt_number, secret=None) -> str:
    secret = secret or settings.SHUFFLE_SECRET
    message = f"{exam_id}:{student_id}:{attempt_number}"
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


class SeededRandom:
    """Counter-mode SHA-256 generator; same seed, same sequence."""

    def __init__(self, seed: str):
        self.seed = seed
        self.counter = 0

    def random(self) -> float:
        self.counter += 1
        digest = hashlib.sha256(f"{self.seed}{self.counter}".encode()).hexdigest()
        return int(digest[:8], 16) / 0x100000000

    def randrange(self, start: int, stop: int) -> int:
        return start + int(self.random() * (stop - start))


def shuffle_with_permutation(items: Sequence, rng: SeededRandom) -> Tuple[list, List[int]]:
    """Fisher-Yates shuffle.

    Returns the shuffled items and the permutation, where ``permutation[i]``
    is the original index of the item now shown at position ``i``.
    """
    shuffled = list(items)
    permutation = list(range(len(shuffled)))
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randrange(0, i + 1)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
        permutation[i], permutation[j] = permutation[j], permutation[i]
    return shuffled, permutation


def invert_permutation(permutation: Sequence[int]) -> List[int]:
    inverse = [0] * len(permutation)
    for presented, original in enumerate(permutation):
        inverse[original] = presented
    return inverse


def build_presentation(exam, student, attempt_number: int, exam_questions=None) -> Dict:
    """Question order and option permutations for one attempt.

    Returns an empty dict when the exam randomises nothing.
    """
    if not (exam.randomize_questions or exam.randomize_options):
        return {}

    exam_questions = list(exam_questions if exam_questions is not None else exam.ordered_questions())
    rng = SeededRandom(generate_seed(exam.pk, student.pk, attempt_number))
    presentation = {}

    if exam.randomize_questions:
        ordered, _ = shuffle_with_permutation(exam_questions, rng)
        presentation['question_order'] = [eq.question_id for eq in ordered]

    if exam.randomize_options:
        permutations = {}
        for eq in exam_questions:
            question = eq.question
            if question.question_type != QuestionType.MULTIPLE_CHOICE:
                continue
            options = question.parsed_options
            if len(options) > 1:
                _, permutation = shuffle_with_permutation(options, rng)
                permutations[str(question.pk)] = permutation
        presentation['option_permutations'] = permutations

    logger.debug(f"Built presentation for exam {exam.pk}, student {student.pk}, attempt {attempt_number}")
    return presentation


def option_permutation(presentation, question_id):
    return ((presentation or {}).get('option_permutations') or {}).get(str(question_id))


def presented_options(question, presentation):
    """Options in the order this attempt shows them."""
    options = question.parsed_options
    permutation = option_permutation(presentation, question.pk)
    if not permutation:
        return options
    return [options[i] for i in permutation]


def _to_canonical_letter(letter: str, permutation: Sequence[int]) -> str:
    index = letter_to_index(letter)
    if 0 <= index < len(permutation):
        return index_to_letter(permutation[index])
    return letter


def to_canonical_selection(selection, permutation):
    """Map a presented MCQ selection (letter or frozenset) to canonical letters."""
    if selection is None or not permutation:
        return selection
    if isinstance(selection, frozenset):
        return frozenset(_to_canonical_letter(letter, permutation) for letter in selection)
    return _to_canonical_letter(selection, permutation)


def order_exam_questions(exam_questions, presentation):
    """Sort exam questions into the attempt's presented order."""
    order = (presentation or {}).get('question_order')
    exam_questions = list(exam_questions)
    if not order:
        return exam_questions
    position = {question_id: i for i, question_id in enumerate(order)}
    return sorted(exam_questions, key=lambda eq: position.get(eq.question_id, len(position)))
