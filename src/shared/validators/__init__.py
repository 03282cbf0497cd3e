"""Shared validators package for the application.

Reusable validation functions called from pydantic field validators across
the auth and user schemas.

Available validators:
- password.py: Password strength validation
- names.py: Person name format validation
- phone.py: E.164 phone number validation
- codes.py: One-time code format validation
"""
