"""Pydantic schemas and value types for settings and pipeline runs."""
