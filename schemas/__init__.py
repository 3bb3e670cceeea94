"""Pydantic schemas for production accounting and notifications."""
