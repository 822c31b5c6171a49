"""Pydantic schemas for session records and result value objects."""
