"""Library management service package root.

Layers: ``config`` (environment accessors), ``db`` (SQLAlchemy models,
engine and repositories), ``services`` (business rules), ``routes`` (Flask
JSON blueprints per role) and ``startup`` (application factory).
"""

__all__ = [
]
