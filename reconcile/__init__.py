"""
Identity Reconciliation Service
===============================
Core package: configuration, logging, database access and the contact
linking engine.
"""

__version__ = "1.0.0"
