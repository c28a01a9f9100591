"""
Orchestrators for SafeTrip.

This module contains the orchestrator that coordinates
the flow between the core services and the ports.
"""
from .safety import SafetyOrchestrator, LocationUpdate, ZoneCheck

__all__ = ["SafetyOrchestrator", "LocationUpdate", "ZoneCheck"]
