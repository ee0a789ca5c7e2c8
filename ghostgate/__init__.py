"""
ghostgate - resilient, cached access layer for the Ghost Admin API.
"""

__version__ = "0.1.0"
