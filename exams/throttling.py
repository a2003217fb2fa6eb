from rest_framework.throttling import UserRateThrottle


class SubmissionRateThrottle(UserRateThrottle):
    """Strict rate limit for final submissions."""
    scope = 'submission'


class AutosaveRateThrottle(UserRateThrottle):
    """Periodic progress saves from the exam client."""
    scope = 'autosave'


class ViolationRateThrottle(UserRateThrottle):
    scope = 'violation'
