"""
Runtime Module - Black Box Interface

Purpose: Run a watches-driven operator inside the launcher process
Interface: RuntimeStarter, ClusterManager, ProxyServer, Reconciler, CompletionSlot
Hidden: Request forwarding, resync scheduling, TLS setup

The proxy and the reconciliation loop report on one CompletionSlot;
the first report decides the launch outcome.
"""

from .completion import CompletionSlot
from .manager import ClusterManager
from .proxy import ProxyServer, create_proxy_app
from .reconciler import Reconciler, Watch, load_watches
from .starter import RuntimeStarter

__all__ = [
    "ClusterManager",
    "CompletionSlot",
    "ProxyServer",
    "Reconciler",
    "RuntimeStarter",
    "Watch",
    "create_proxy_app",
    "load_watches",
]
