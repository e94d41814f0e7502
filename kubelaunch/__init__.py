"""
Kubelaunch - Local Operator Launcher

Runs a Kubernetes operator on a developer machine against a remote cluster.

Architecture:
- Each module is self-contained with clear interfaces
- The orchestrator only talks to modules through their public functions
- Launch configuration is built once and passed explicitly

Modules:
- kubeconfig: Locate and load cluster credentials
- classifier: Decide how the operator project is run
- native: Build and run a Go operator as a child process
- runtime: Admission proxy and reconciliation loop in-process
- orchestrator: Single-shot launch lifecycle
"""

__version__ = "0.1.0"
