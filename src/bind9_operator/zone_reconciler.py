"""Reconcile zone resources against the generated BIND configuration."""

from __future__ import annotations

import logging
import queue
from typing import Any, Callable, Iterable, Protocol

from .emitter import BindConfigEmitter
from .models import (
    Bind9OperatorError,
    RemoveResult,
    Resource,
    ResourceEventType,
    ZoneResult,
    ZoneStatus,
    has_proper_status,
)

LOG = logging.getLogger("bind9_operator.zone_reconciler")


class ResourceStore(Protocol):
    """What the reconcilers need from a resource store."""

    def list(self) -> list[dict[str, Any]]: ...

    def patch_status(self, resource: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]: ...


class ReconcilerData:
    """Desired and actual zone names of a single tick."""

    def __init__(self, resources: Iterable[Resource], zone_domain_names: Iterable[str]):
        self.resources: dict[str, Resource] = {}
        for resource in resources:
            if resource.domain_name is None:
                LOG.warning("Ignoring zone resource %s without spec.domainName", resource.name)
                continue
            self.resources[resource.domain_name] = resource
        self.desired = set(self.resources)
        self.actual = set(zone_domain_names)

    def dispensable(self) -> set[str]:
        """Zones with artifacts on disk but no resource."""
        return self.actual - self.desired

    def missing(self) -> set[str]:
        """Zones with a resource but no artifacts."""
        return self.desired - self.actual

    def without_proper_status(self) -> set[str]:
        """Zones whose resource status lacks any of the key fields."""
        return {name for name, resource in self.resources.items() if not has_proper_status(resource.status)}

    def resource_for(self, domain_name: str) -> Resource:
        return self.resources[domain_name]


class ZoneReconciler:
    """Converges emitted zones to the set of zone resources.

    Watch events are only put on a bounded channel. All file and network
    work happens in :meth:`tick`, which processes deletes before adds and
    requests at most one BIND restart.
    """

    def __init__(
        self,
        store: ResourceStore,
        emitter: BindConfigEmitter,
        restart_callback: Callable[[], None],
        event_queue_size: int = 1024,
    ):
        self.store = store
        self.emitter = emitter
        self.restart_callback = restart_callback
        self.events: queue.Queue[tuple[ResourceEventType, Resource]] = queue.Queue(maxsize=event_queue_size)
        self.add_queue: dict[str, Resource] = {}
        self.delete_queue: dict[str, Resource] = {}
        self.restart_requested = False
        self.resync_requested = False

    def on_resource_event(self, kind: ResourceEventType, raw: dict[str, Any]) -> None:
        """Record a watch event for the next tick."""
        resource = Resource(raw or {})
        if resource.domain_name is None:
            LOG.debug("Ignoring %s event without spec.domainName: %s", kind.value, resource.name)
            return
        try:
            self.events.put_nowait((kind, resource))
        except queue.Full:
            LOG.warning("Event queue full; dropping %s event for %s and resyncing", kind.value, resource.domain_name)
            self.resync_requested = True
            return
        LOG.debug("Queued %s event for zone %s", kind.value, resource.domain_name)

    def _drain_events(self) -> None:
        """Coalesce channelled events into the add and delete queues."""
        while True:
            try:
                kind, resource = self.events.get_nowait()
            except queue.Empty:
                return
            target = self.delete_queue if kind is ResourceEventType.DELETED else self.add_queue
            target[resource.domain_name] = resource

    def add(self, resource: Resource) -> ZoneResult:
        """Bring one zone up to date and patch its status."""
        result = self.emitter.add_or_update_zone(resource.spec, resource.status)
        if result.changed:
            LOG.debug("Requesting BIND restart due to changes to zone %s", resource.domain_name)
            self.restart_requested = True
        else:
            LOG.debug("Zone %s is unchanged", resource.domain_name)
        self._patch_status(resource, result.status)
        return result

    def remove(self, resource: Resource) -> RemoveResult:
        """Delete the artifacts of one zone."""
        LOG.debug("Removing zone %s", resource.domain_name)
        changed = self.emitter.delete_zone(resource.domain_name)
        if changed:
            LOG.debug("Requesting BIND restart due to removal of zone %s", resource.domain_name)
            self.restart_requested = True
        return RemoveResult(changed=changed)

    def _patch_status(self, resource: Resource, status: ZoneStatus) -> None:
        """Push the fields of ``status`` that differ from the resource's status."""
        patch = status.patch_from(resource.status)
        if not patch:
            return
        LOG.debug("Patching status of zone %s: fields %s", resource.domain_name, sorted(patch))
        try:
            self.store.patch_status(resource.raw, patch)
        except Exception as exc:  # noqa: BLE001
            LOG.warning("Error while patching status of zone %s: %s", resource.domain_name, exc)

    def _run_queues(self) -> None:
        """Process all deletes, then all adds; one failing zone never stops the batch."""
        deletes, self.delete_queue = self.delete_queue, {}
        for domain_name, resource in deletes.items():
            try:
                self.remove(resource)
            except (Bind9OperatorError, OSError) as exc:
                LOG.error("Failed to remove zone %s: %s", domain_name, exc)

        adds, self.add_queue = self.add_queue, {}
        for domain_name, resource in adds.items():
            try:
                self.add(resource)
            except (Bind9OperatorError, OSError) as exc:
                LOG.error("Failed to add zone %s: %s", domain_name, exc)

    def tick(self) -> None:
        """Run one reconciliation pass."""
        self._drain_events()
        try:
            resources = [Resource(item) for item in self.store.list()]
        except Exception as exc:  # noqa: BLE001
            LOG.error("Unable to list zone resources; retrying next tick: %s", exc)
            return
        data = ReconcilerData(resources, self.emitter.get_zones())

        # The listing is at least as recent as any queued event.
        for name in self.add_queue:
            if name in data.resources:
                self.add_queue[name] = data.resource_for(name)

        for name in sorted(data.dispensable()):
            LOG.debug("Deleting dispensable zone %s", name)
            self.delete_queue[name] = Resource({"spec": {"domainName": name}})

        for name in sorted(data.missing()):
            LOG.debug("Adding missing zone %s", name)
            self.add_queue[name] = data.resource_for(name)

        for name in sorted(data.without_proper_status()):
            LOG.warning("Re-running zone %s because it has no proper status", name)
            self.add_queue[name] = data.resource_for(name)

        if self.resync_requested:
            LOG.info("Resyncing all %d zones", len(data.desired))
            self.resync_requested = False
            for name in data.desired:
                self.add_queue.setdefault(name, data.resource_for(name))

        self._run_queues()

        if self.restart_requested:
            LOG.info("Changes occurred, BIND restart requested")
            try:
                self.restart_callback()
            except Exception as exc:  # noqa: BLE001
                LOG.error("BIND restart request failed; retrying next tick: %s", exc)
                return
            self.restart_requested = False
