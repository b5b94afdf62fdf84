"""Database models package."""
from idea_importer.db.models.idea import Idea

__all__ = ["Idea"]
