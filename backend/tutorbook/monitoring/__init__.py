# backend/tutorbook/monitoring/__init__.py
