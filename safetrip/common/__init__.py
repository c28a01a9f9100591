"""
Common utilities for SafeTrip.

Geographic math, retry helpers and keyed locks shared by the
core and the adapters.
"""
