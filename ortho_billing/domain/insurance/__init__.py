"""
Insurance Domain

Orthodontic benefit checks, insurance payment estimates and claim reporting.
"""

from .router import router

__all__ = ["router"]
