"""Zone statistics aggregators.

Brief:
    Each module defines one or more BaseAggregator subclasses. They are
    discovered by alias through ``zonestats.aggregators.registry``.

Inputs:
    - None.

Outputs:
    - Makes ``zonestats.aggregators.<module>`` importable by alias lookup.
"""
