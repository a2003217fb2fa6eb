from django.conf import settings
from .engine import GradingEngine


def get_grading_engine(decimal_places: int = None) -> GradingEngine:
    if decimal_places is None:
        decimal_places = getattr(settings, 'GRADING', {}).get('SCORE_DECIMAL_PLACES', 2)
    return GradingEngine(decimal_places=decimal_places)
