"""loadspec: turn natural-language load-test requests into structured specs."""

__version__ = "0.1.0"
