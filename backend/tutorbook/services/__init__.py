# backend/tutorbook/services/__init__.py
