"""Marketship: multi-carrier shipping engine for a vendor marketplace."""

__version__ = "1.0.0"
