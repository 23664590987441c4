"""Online experimentation engine: bucketing, statistical verdicts and auto-stop."""

__version__ = "0.1.0"
