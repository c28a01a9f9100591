"""
Observability components for SafeTrip.

This module contains logging, metrics and the health/metrics
HTTP surface used for operational visibility.
"""
