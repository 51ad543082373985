"""Where the Kubernetes API is and how to authenticate against it.

Resolution order:
1. KUBE_API_URL, with the configured token and CA files.
2. The in-cluster service account.
3. A kubeconfig file: KUBECONFIG, else ~/.kube/config.
"""
import logging
import os
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Tuple

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.config.config_exception import ConfigException
from kubernetes.config.incluster_config import InClusterConfigLoader

from prstatus.config import Settings
from prstatus.exceptions import SourceConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KubeConnection:
    api_url: str
    origin: str
    token_path: Optional[str] = None
    ca_path: Optional[str] = None
    authorization: Optional[Callable[[], Optional[str]]] = None
    client_cert: Optional[Tuple[str, str]] = None
    verify: bool = True


def _in_cluster(settings: Settings, environ: Mapping[str, str]) -> KubeConnection:
    configuration = k8s_client.Configuration()
    InClusterConfigLoader(
        token_filename=settings.kube_token_path,
        cert_filename=settings.kube_ca_path,
        environ=environ,
    ).load_and_set(configuration)
    return KubeConnection(
        api_url=configuration.host,
        origin="in-cluster",
        token_path=settings.kube_token_path,
        ca_path=configuration.ssl_ca_cert,
    )


def _from_kubeconfig(settings: Settings) -> KubeConnection:
    configuration = k8s_client.Configuration()
    k8s_config.load_kube_config(
        config_file=settings.kubeconfig,
        context=settings.kube_context,
        client_configuration=configuration,
        persist_config=False,
    )
    client_cert = None
    if configuration.cert_file and configuration.key_file:
        client_cert = (configuration.cert_file, configuration.key_file)
    return KubeConnection(
        api_url=configuration.host,
        origin="kubeconfig",
        ca_path=configuration.ssl_ca_cert,
        # Runs the refresh hook, so expiring exec/OIDC tokens are renewed.
        authorization=lambda: configuration.get_api_key_with_prefix("authorization"),
        client_cert=client_cert,
        verify=configuration.verify_ssl,
    )


def resolve_connection(settings: Settings, environ: Optional[Mapping[str, str]] = None) -> KubeConnection:
    """Find the API server and credentials the exporter should use.

    Raises:
        SourceConfigError: If neither in-cluster config nor a kubeconfig is usable
    """
    environ = os.environ if environ is None else environ
    if settings.kube_api_url:
        return KubeConnection(
            api_url=settings.kube_api_url,
            origin="explicit",
            token_path=settings.kube_token_path,
            ca_path=settings.kube_ca_path,
        )

    try:
        connection = _in_cluster(settings, environ)
    except ConfigException as exc:
        logger.info(f"In-cluster config unavailable ({exc}), trying kubeconfig")
        try:
            connection = _from_kubeconfig(settings)
        except ConfigException as kubeconfig_exc:
            raise SourceConfigError(
                f"No Kubernetes configuration found: in-cluster: {exc}; kubeconfig: {kubeconfig_exc}"
            ) from kubeconfig_exc

    logger.info(f"Using Kubernetes API at {connection.api_url} ({connection.origin})")
    return connection


__all__ = ["KubeConnection", "resolve_connection"]
