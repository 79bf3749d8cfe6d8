"""
Main application package for FashionMuse.

This package contains the persistence and generation core of the FashionMuse
fashion-photo app: the relational store and ORM models (database.py), CRUD
operations (crud.py), password hashing (security.py), the credit ledger
(ledger.py), the media archive (archive.py), the external image-edit client
(ai_core.py) and the generation orchestrator (generation.py), plus the FastAPI
surface that exposes them (main.py).

The FastAPI application instance 'app' is exported from this package
for use by ASGI servers like Uvicorn.
"""


from .main import app


__all__ = ["app"]
