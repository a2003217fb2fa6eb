"""
Reviewer hints for free-text answers.

Similarity to the reference answer is shown next to a short answer or essay
in the review queue. It is never written into an answer's score.
"""
import logging
from typing import Optional

from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics.pairwise import cosine_similarity

logger = logging.getLogger(__name__)


def reference_similarity(answer_text: str, reference: Optional[str]) -> Optional[float]:
    """TF-IDF cosine similarity in [0, 1], or None when there is nothing to compare."""
    if not reference or not (answer_text or '').strip() or not reference.strip():
        return None

    vectorizer = TfidfVectorizer(
        lowercase=True,
        stop_words='english',
        ngram_range=(1, 2),
        sublinear_tf=True
    )
    try:
        matrix = vectorizer.fit_transform([reference, answer_text])
    except ValueError:
        # only stop words / punctuation on both sides
        logger.debug("Empty vocabulary for reference similarity")
        return None
    return round(float(cosine_similarity(matrix[0:1], matrix[1:2])[0][0]), 3)
