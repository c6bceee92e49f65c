# backend/tutorbook/__init__.py
"""Tutor availability and booking engine."""

__version__ = "0.1.0"
