"""Pydantic schemas for governance records."""
