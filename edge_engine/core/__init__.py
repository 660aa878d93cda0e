"""Core mathematics, configuration and value types for the edge engine.

This package contains pure, sport-agnostic building blocks:

- ``odds_math``: American/decimal conversion, implied probability, de-vig
- ``kelly``: fractional Kelly sizing for recommended stakes
- ``engine_config``: policy knobs (thresholds, anchor books, timeouts)
- ``market``: immutable quote / snapshot / fair-odds value objects
- ``errors``: exception taxonomy shared by services and jobs

Nothing in this package imports from ``edge_engine.services`` or
``edge_engine.models``.  All modules are side-effect-free and unit-testable
in isolation.
"""
