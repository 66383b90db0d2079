"""Shared FastAPI pieces: middleware, exception handlers, request dependencies."""
