"""Middleware for the lucky money bot"""

from .database import DatabaseMiddleware
from .engine import EngineMiddleware
from .language import LanguageMiddleware
from .logging import LoggingMiddleware

__all__ = [
    "DatabaseMiddleware",
    "EngineMiddleware",
    "LanguageMiddleware",
    "LoggingMiddleware",
]
