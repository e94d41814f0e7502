"""
Cluster client manager.

Holds one authenticated httpx.AsyncClient for the API server of the current
kubeconfig context, scoped to the watched namespace. The admission proxy and
the reconciliation loop share it.
"""

import logging
import ssl
from typing import Any, Dict, Generator, List, Union

import httpx
from kubernetes import client

from kubelaunch.errors import KubeconfigInvalid, ManagerInitFailed
from kubelaunch.modules.kubeconfig import load_kubeconfig

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)
# Watches and log follows stay open with long quiet gaps
STREAM_TIMEOUT = httpx.Timeout(None, connect=10.0)


class ConfigurationAuth(httpx.Auth):
    """
    Sets the Authorization header from a kubernetes client Configuration.

    The header is looked up per request so tokens from exec or auth-provider
    plugins are refreshed when they expire.
    """

    def __init__(self, configuration: client.Configuration):
        self.configuration = configuration

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        value = self.configuration.get_api_key_with_prefix("authorization")
        if value:
            request.headers["Authorization"] = value
        yield request


def build_verify(configuration: client.Configuration) -> Union[bool, ssl.SSLContext]:
    """TLS verification settings for httpx from a client Configuration."""
    if not configuration.host.startswith("https://"):
        return True

    if configuration.verify_ssl:
        context = ssl.create_default_context(cafile=configuration.ssl_ca_cert or None)
    else:
        logger.warning("TLS verification disabled by kubeconfig (insecure-skip-tls-verify)")
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    if configuration.cert_file:
        context.load_cert_chain(configuration.cert_file, configuration.key_file)
    return context


class ClusterManager:
    """Cluster client scoped to one namespace ("" means all namespaces)."""

    def __init__(self, configuration: client.Configuration, namespace: str = "default"):
        """
        Build the cluster client.

        Args:
            configuration: kubernetes client configuration from the kubeconfig
            namespace: Namespace to watch, empty for all namespaces

        Raises:
            ManagerInitFailed: If TLS material or the server URL is unusable
        """
        self.configuration = configuration
        self.namespace = namespace
        try:
            self.client = httpx.AsyncClient(
                base_url=configuration.host,
                verify=build_verify(configuration),
                auth=ConfigurationAuth(configuration),
                timeout=DEFAULT_TIMEOUT,
            )
        except (OSError, ssl.SSLError, ValueError, httpx.InvalidURL) as e:
            raise ManagerInitFailed(f"failed to create cluster client for {configuration.host}: {e}") from e
        logger.debug(f"Cluster client ready for {configuration.host}")

    @classmethod
    def from_kubeconfig(cls, kubeconfig_path: str, namespace: str = "default") -> "ClusterManager":
        """Load client configuration from a kubeconfig file and build the manager."""
        try:
            configuration = load_kubeconfig(kubeconfig_path)
        except KubeconfigInvalid as e:
            raise ManagerInitFailed(str(e)) from e
        return cls(configuration, namespace)

    @property
    def host(self) -> str:
        return self.configuration.host

    def resource_path(self, group: str, version: str, plural: str) -> str:
        """API path listing a resource in the watched namespace."""
        prefix = f"/api/{version}" if not group else f"/apis/{group}/{version}"
        if self.namespace:
            return f"{prefix}/namespaces/{self.namespace}/{plural}"
        return f"{prefix}/{plural}"

    async def list_objects(self, group: str, version: str, plural: str) -> List[Dict[str, Any]]:
        """
        List objects of one resource in the watched namespace.

        Items that are not objects are dropped.

        Raises:
            httpx.HTTPError: On transport errors, non-2xx responses or a body
                that is not a Kubernetes list
        """
        response = await self.client.get(self.resource_path(group, version, plural))
        response.raise_for_status()
        try:
            body = response.json()
        except ValueError as e:
            raise httpx.DecodingError(f"response from {response.url} is not JSON: {e}", request=response.request) from e
        if not isinstance(body, dict):
            raise httpx.DecodingError(f"response from {response.url} is not a list object", request=response.request)

        items = body.get("items") or []
        if not isinstance(items, list):
            raise httpx.DecodingError(f"items in response from {response.url} is not a list", request=response.request)
        objects = [item for item in items if isinstance(item, dict)]
        if len(objects) != len(items):
            logger.warning(f"Dropped {len(items) - len(objects)} malformed items from {response.url}")
        return objects

    async def close(self) -> None:
        await self.client.aclose()
