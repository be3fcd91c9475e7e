"""State/store layer.

This package owns the record store the rest of the core reads and writes,
and the deterministic policy that derives a unit's operational state from
its telemetry.
"""
