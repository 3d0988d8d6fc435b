"""Scoring, eligibility and standings for a one-use-per-player NFL playoff pool."""

__version__ = '0.3.0'
