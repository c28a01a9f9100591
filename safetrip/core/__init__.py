"""
Core domain models and services for SafeTrip.

This module contains the domain models and the risk/alert logic
that are independent of storage and delivery technology.
"""

from .errors import (
    SafeTripError, ValidationError, PermissionDeniedError, InvalidTransitionError,
    NotFoundError, CollaboratorError, StaleRecordError,
)
from .models import (
    Position, Zone, Agent, AgentState, AgentStatus, Authority, Alert, AlertKind,
    AlertStatus, Incident, EmergencyContact, Severity, make_position,
)
from .roles import Role, Capability, Actor
from .zones import ZoneIndex
from .scoring import ScoreEngine, compute_score
from .lifecycle import AlertLifecycle, Notifier, TRANSITIONS
from .incidents import IncidentLedger, FirstMatchRanking, ResponderRanking

__all__ = [
    "SafeTripError", "ValidationError", "PermissionDeniedError", "InvalidTransitionError",
    "NotFoundError", "CollaboratorError", "StaleRecordError",
    "Position", "Zone", "Agent", "AgentState", "AgentStatus", "Authority", "Alert", "AlertKind",
    "AlertStatus", "Incident", "EmergencyContact", "Severity", "make_position",
    "Role", "Capability", "Actor",
    "ZoneIndex", "ScoreEngine", "compute_score",
    "AlertLifecycle", "Notifier", "TRANSITIONS",
    "IncidentLedger", "FirstMatchRanking", "ResponderRanking",
]
