"""HTTP interface for tokenization and question answering."""

from .app import create_app

__all__ = ["create_app"]
