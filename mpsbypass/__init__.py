"""Bypass management for machine protection inputs and a two-slot data buffer."""

__version__ = "0.1.0"
__all__ = ["buffer", "bypass"]