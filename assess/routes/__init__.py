"""API route modules."""
from assess.routes import assessments, attempts, submissions

__all__ = ["assessments", "attempts", "submissions"]
