"""Exacta Race: six-runner weighted race engine with exacta wagering."""

__version__ = "1.0.0"
