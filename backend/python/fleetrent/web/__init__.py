"""Flask JSON API for the fleet rental backend."""

from .app import create_app

__all__ = ['create_app']
