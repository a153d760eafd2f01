"""Pydantic DTOs and HTTP request/response schemas."""
