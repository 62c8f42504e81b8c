"""verisched: dependency-aware, human-supervised verification scheduler."""

__version__ = "0.1.0"
