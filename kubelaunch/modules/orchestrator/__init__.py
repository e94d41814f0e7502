"""
Orchestrator Module - Black Box Interface

Purpose: Run one local launch from configuration to termination
Interface: LaunchOrchestrator, LaunchState
Hidden: Strategy selection, stop event and deadline wiring
"""

from .orchestrator import LaunchOrchestrator, LaunchState

__all__ = ["LaunchOrchestrator", "LaunchState"]
