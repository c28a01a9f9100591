"""
SafeTrip core package.

Geospatial risk evaluation and alert lifecycle engine for
tracking tourists, scoring their exposure to risk zones and
driving the SOS/incident response workflow.
"""

__version__ = "0.3.0"
