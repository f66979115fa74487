"""
API routes for the CoOwnSign backend
"""

from . import documents, signatures

__all__ = ["documents", "signatures"]
