"""
Kubeconfig Module - Black Box Interface

Purpose: Locate the kubeconfig file and load client configuration from it
Interface: resolve(), load_kubeconfig()
Hidden: Home directory lookup, kubernetes client config loading

Environment contract shared with the operator process.
"""

from .resolver import DEFAULT_CONFIG_PATH, load_kubeconfig, resolve

KUBECONFIG_ENV_VAR = "KUBERNETES_CONFIG"
WATCH_NAMESPACE_ENV_VAR = "WATCH_NAMESPACE"

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "KUBECONFIG_ENV_VAR",
    "WATCH_NAMESPACE_ENV_VAR",
    "load_kubeconfig",
    "resolve",
]
