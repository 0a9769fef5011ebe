"""FilmWeekly asynchronous submission processing pipeline."""

__version__ = "0.1.0"
