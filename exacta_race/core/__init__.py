"""Core mathematics and configuration for the exacta race engine.

This package contains pure building blocks:

- ``race_config``: canonical field, odds literal and RNG constants
- ``strength``: participants and fixed-point normalized shares
- ``odds_table``: exacta payout multipliers
- ``probability``: theoretical exacta probabilities (audit / display)
- ``outcome``: LCG and weighted draw without replacement
- ``events``: notification DTOs
- ``interfaces``: ABCs for the injected identity, balance, notification and
  race-state capabilities

Nothing in this package imports from ``exacta_race.services`` or
``exacta_race.models``.  No module here performs I/O or logs.
"""
