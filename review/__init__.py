from .percentile import ReviewOutcome, ReviewStats, WindowStats, percentile_of, stats_for, submit_review

__all__ = [
    "ReviewOutcome",
    "ReviewStats",
    "WindowStats",
    "percentile_of",
    "stats_for",
    "submit_review",
]
