"""Payment transaction reconciliation for the school-catering ordering platform."""

__version__ = "1.0.0"
