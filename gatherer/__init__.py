"""Process gatherer - local-first editor core for documenting business process steps."""

__version__ = "0.1.0"
