"""
Hinan Coordinator
=================

The "vApp": owns one SessionState per Agent connection and runs the
evacuation protocol against the Agent and the Backend.

Public API:
- ProtocolEngine: Per-session dispatcher and regeneration loop
- SessionPhase: Protocol phases
- SessionState: Authoritative per-session state
- RegenerationTimer: Cancellable periodic task
- BackendGateway: Backend client
- BackendUnavailableError: Raised when the Backend cannot answer
"""

from hinan.coordinator.state import EVAC_COMPLETE_TEXT, OutboundMessage, SessionState
from hinan.coordinator.timer import RegenerationTimer
from hinan.coordinator.gateway import BackendGateway, BackendUnavailableError
from hinan.coordinator.engine import ProtocolEngine, SessionPhase

__all__ = [
    "EVAC_COMPLETE_TEXT",
    "OutboundMessage",
    "SessionState",
    "RegenerationTimer",
    "BackendGateway",
    "BackendUnavailableError",
    "ProtocolEngine",
    "SessionPhase",
]
