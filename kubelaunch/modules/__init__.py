"""
Kubelaunch Modules - Black Box Architecture

Each module is a self-contained black box with:
- Clear interface (public API)
- Hidden implementation details
- Single responsibility

The orchestrator composes them; modules never import the orchestrator.
"""
