import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from kubernetes import client
from kubernetes import config as kube_config

from kubelaunch.errors import HomeDirUnavailable, KubeconfigInvalid, KubeconfigNotFound

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join(".kube", "config")


def _home_dir() -> str:
    try:
        return str(Path.home())
    except (RuntimeError, KeyError) as e:
        raise HomeDirUnavailable(f"failed to determine user's home dir: ({e})") from e


def resolve(explicit_path: str = "") -> str:
    """
    Resolve the kubeconfig file path.

    Args:
        explicit_path: Path given on the command line, may be empty

    Returns:
        explicit_path unchanged, or <home>/.kube/config when it is empty

    Raises:
        HomeDirUnavailable: If no path was given and the home dir is unknown
        KubeconfigNotFound: If the resolved path does not exist
    """
    path = explicit_path
    if not path:
        path = os.path.join(_home_dir(), DEFAULT_CONFIG_PATH)

    if not os.path.exists(path):
        raise KubeconfigNotFound(f"failed to find the kubeconfig file ({path})")

    logger.debug(f"Using kubeconfig {path}")
    return path


def load_kubeconfig(path: str, context: Optional[str] = None) -> client.Configuration:
    """
    Load client configuration for a kubeconfig context.

    The kubernetes client resolves the context, decodes embedded certificates
    into temporary files and runs exec/auth-provider plugins, so cloud
    kubeconfigs (EKS, GKE, AKS) yield a usable bearer token.

    Args:
        path: Kubeconfig file path (already resolved)
        context: Context name, defaults to current-context

    Returns:
        kubernetes.client.Configuration for the selected context

    Raises:
        KubeconfigInvalid: If the file cannot be parsed or the context is incomplete
    """
    configuration = client.Configuration()
    try:
        kube_config.load_kube_config(
            config_file=path,
            context=context,
            client_configuration=configuration,
            persist_config=False,
        )
    except (kube_config.ConfigException, yaml.YAMLError, OSError, ValueError, TypeError, AttributeError) as e:
        raise KubeconfigInvalid(f"failed to load kubeconfig {path}: {e}") from e

    logger.debug(f"Loaded kubeconfig {path} for {configuration.host}")
    return configuration
