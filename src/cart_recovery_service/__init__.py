"""Abandoned cart tracking and recovery service."""

__version__ = "1.0.0"
