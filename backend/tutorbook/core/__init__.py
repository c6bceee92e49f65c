# backend/tutorbook/core/__init__.py
