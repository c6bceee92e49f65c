# backend/tutorbook/utils/__init__.py
