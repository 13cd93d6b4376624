"""
API routes package.
"""

from app.api import quotes, super_packages

__all__ = [
    "quotes",
    "super_packages",
]
