"""Kubernetes client wrapper for the event watcher."""

from __future__ import annotations

from kubernetes import client, config
from kubernetes.client import CoreV1Api
from kubernetes.config.config_exception import ConfigException

IN_CLUSTER = "in-cluster"


class K8sClient:
    """Loads cluster credentials once and hands out the CoreV1 API."""

    def __init__(self, kubeconfig: str | None = None, context: str | None = None):
        self.kubeconfig = kubeconfig
        self.context = context
        self.in_cluster = False
        self._api_client: client.ApiClient | None = None

    def connect(self) -> None:
        """Load kubeconfig (or the pod's service account) and create the API client."""
        try:
            config.load_kube_config(
                config_file=self.kubeconfig,
                context=self.context,
            )
        except ConfigException:
            # Running inside a pod without a kubeconfig
            config.load_incluster_config()
            self.in_cluster = True

        self._api_client = client.ApiClient()

    @property
    def api(self) -> client.ApiClient:
        if self._api_client is None:
            raise RuntimeError("K8sClient not connected. Call connect() first.")
        return self._api_client

    @property
    def core_v1(self) -> CoreV1Api:
        return CoreV1Api(self.api)

    def describe(self) -> tuple[str, str]:
        """Return (cluster name, context name) of the active kubeconfig context."""
        if self.in_cluster:
            return IN_CLUSTER, IN_CLUSTER
        try:
            _, active_context = config.list_kube_config_contexts(
                config_file=self.kubeconfig,
            )
        except ConfigException:
            return IN_CLUSTER, IN_CLUSTER
        if self.context:
            return self._cluster_of(self.context), self.context
        return (
            active_context.get("context", {}).get("cluster", "unknown"),
            active_context.get("name", "unknown"),
        )

    def _cluster_of(self, context_name: str) -> str:
        contexts, _ = config.list_kube_config_contexts(config_file=self.kubeconfig)
        for ctx in contexts:
            if ctx.get("name") == context_name:
                return ctx.get("context", {}).get("cluster", "unknown")
        return "unknown"

    def close(self) -> None:
        if self._api_client is not None:
            self._api_client.close()
            self._api_client = None
