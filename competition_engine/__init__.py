"""
competition_engine
Multi-round elimination competition engine: qualification, visibility
reconciliation, early termination and like-based leaderboards.
"""

__version__ = "1.0.0"
