"""
Identity Reconciliation API
===========================
FastAPI layer in front of the contact linking engine.
"""

from reconcile import __version__

__all__ = ['__version__']
