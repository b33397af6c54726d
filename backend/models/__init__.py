"""Pydantic schemas for facts, documents and spreads."""
