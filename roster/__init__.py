"""
Rider roster service.

A FastAPI backend for managing delivery riders, stored in MongoDB with an
in-memory snapshot fallback for when the database cannot be reached.
"""
