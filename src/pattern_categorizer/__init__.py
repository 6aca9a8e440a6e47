"""Pattern-based transaction categorization engine."""

__version__ = "0.1.0"
