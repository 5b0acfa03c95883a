"""Kubernetes access: custom resource store, watch and service lookup."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from .models import ExpectedValue, LookupFailure, ResourceEventType, ResourceStoreError

LOG = logging.getLogger("bind9_operator.kube")

EventCallback = Callable[[ResourceEventType, dict[str, Any]], None]

WATCH_TIMEOUT_SECONDS = 300
WATCH_RETRY_SECONDS = 5.0


def load_kube_config(mode: str = "auto") -> None:
    """Load cluster credentials, preferring the in-cluster service account."""
    if mode == "incluster":
        config.load_incluster_config()
        return
    if mode == "kubeconfig":
        config.load_kube_config()
        return
    try:
        config.load_incluster_config()
        LOG.info("Loaded in-cluster Kubernetes config.")
    except config.ConfigException:
        config.load_kube_config()
        LOG.info("Loaded Kubernetes config from kubeconfig.")


class CustomResourceStore:
    """List, patch and watch one namespaced custom resource type."""

    def __init__(
        self,
        api: client.CustomObjectsApi,
        group: str,
        version: str,
        namespace: str,
        plural: str,
    ):
        self.api = api
        self.group = group
        self.version = version
        self.namespace = namespace
        self.plural = plural

    def __repr__(self) -> str:
        return f"CustomResourceStore({self.plural}.{self.group}/{self.version} in {self.namespace})"

    def list(self) -> list[dict[str, Any]]:
        """Return all current resources."""
        try:
            response = self.api.list_namespaced_custom_object(self.group, self.version, self.namespace, self.plural)
        except ApiException as exc:
            raise ResourceStoreError(f"Unable to list {self.plural}: {exc.status} {exc.reason}") from exc
        return list(response.get("items", []))

    def patch_status(self, resource: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
        """Merge ``patch`` into the status subresource of ``resource``."""
        name = (resource.get("metadata") or {}).get("name")
        if not name:
            raise ResourceStoreError("Cannot patch the status of a resource without metadata.name.")
        try:
            return self.api.patch_namespaced_custom_object_status(
                self.group,
                self.version,
                self.namespace,
                self.plural,
                name,
                {"status": patch},
            )
        except ApiException as exc:
            raise ResourceStoreError(f"Unable to patch status of {self.plural}/{name}: {exc.status} {exc.reason}") from exc

    def watch(self, on_event: EventCallback, stop_event: threading.Event) -> None:
        """Deliver watch events to ``on_event`` until ``stop_event`` is set.

        The stream is restarted after timeouts and errors; ``on_event`` must
        only enqueue.
        """
        while not stop_event.is_set():
            watcher = watch.Watch()
            try:
                for event in watcher.stream(
                    self.api.list_namespaced_custom_object,
                    self.group,
                    self.version,
                    self.namespace,
                    self.plural,
                    timeout_seconds=WATCH_TIMEOUT_SECONDS,
                ):
                    if stop_event.is_set():
                        watcher.stop()
                        break
                    try:
                        kind = ResourceEventType(event.get("type"))
                    except ValueError:
                        LOG.warning("Ignoring %s watch event for %s", event.get("type"), self.plural)
                        continue
                    on_event(kind, event.get("object") or {})
            except ApiException as exc:
                LOG.warning("Watch of %s failed: %s %s; retrying", self.plural, exc.status, exc.reason)
                stop_event.wait(WATCH_RETRY_SECONDS)
            except Exception as exc:  # noqa: BLE001
                LOG.warning("Watch of %s interrupted: %s; retrying", self.plural, exc)
                stop_event.wait(WATCH_RETRY_SECONDS)


def _address_type(address: str) -> str:
    """Return ``A`` for IPv4 and ``AAAA`` for IPv6 addresses."""
    return "AAAA" if ":" in address else "A"


class ServiceAddressLookup:
    """Reads the externally assigned addresses of LoadBalancer services."""

    def __init__(self, api: client.CoreV1Api):
        self.api = api

    def external_addresses(self, name: str, namespace: str) -> list[ExpectedValue]:
        """Return ``status.loadBalancer.ingress[].ip`` as typed values."""
        try:
            service = self.api.read_namespaced_service(name, namespace)
        except ApiException as exc:
            raise LookupFailure(f"Unable to read service {namespace}/{name}: {exc.status} {exc.reason}") from exc

        load_balancer = service.status.load_balancer if service.status else None
        ingress = (load_balancer.ingress if load_balancer else None) or []
        addresses = [ExpectedValue(type=_address_type(entry.ip), value=entry.ip) for entry in ingress if entry.ip]
        LOG.debug("Service %s/%s has external addresses %s", namespace, name, [a.value for a in addresses])
        return addresses
