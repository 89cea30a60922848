"""Tibabu Connect: telehealth conversations with real-time delivery."""

__version__ = "0.1.0"
