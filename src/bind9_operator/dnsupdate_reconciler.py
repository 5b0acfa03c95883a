"""Reconcile DnsUpdate resources against live DNS answers."""

from __future__ import annotations

import logging
import queue
from typing import Any, Protocol

from .dnsupdate import UpdateRecord, canonical_value, parse_dns_update_spec, render_transaction
from .models import (
    Bind9OperatorError,
    ExpectedValue,
    LookupFailure,
    Resource,
    ResourceEventType,
    SubmissionResult,
)
from .zone_reconciler import ResourceStore

LOG = logging.getLogger("bind9_operator.dnsupdate_reconciler")


class AddressLookup(Protocol):
    def external_addresses(self, name: str, namespace: str) -> list[ExpectedValue]: ...


class QueryClient(Protocol):
    def resolve(self, server: str, rtype: str, name: str) -> list[str]: ...


class UpdateClient(Protocol):
    def submit(self, server: str, transaction: str, key_string: str) -> SubmissionResult: ...


class DnsUpdateReconciler:
    """Keeps the records of DnsUpdate resources present on their DNS servers."""

    def __init__(
        self,
        store: ResourceStore,
        addresses: AddressLookup,
        dns_client: QueryClient,
        update_client: UpdateClient,
        event_queue_size: int = 1024,
    ):
        self.store = store
        self.addresses = addresses
        self.dns_client = dns_client
        self.update_client = update_client
        self.events: queue.Queue[tuple[ResourceEventType, Resource]] = queue.Queue(maxsize=event_queue_size)

    def on_resource_event(self, kind: ResourceEventType, raw: dict[str, Any]) -> None:
        """Record a watch event for the next tick."""
        resource = Resource(raw or {})
        if not resource.name:
            LOG.debug("Ignoring %s event without metadata.name", kind.value)
            return
        try:
            self.events.put_nowait((kind, resource))
        except queue.Full:
            # Adds and modifications are covered by the full listing of the next tick.
            LOG.warning("Event queue full; dropping %s event for %s", kind.value, resource.name)

    def _drain_events(self) -> dict[str, tuple[ResourceEventType, Resource]]:
        """Return the latest queued event per resource name."""
        latest: dict[str, tuple[ResourceEventType, Resource]] = {}
        while True:
            try:
                kind, resource = self.events.get_nowait()
            except queue.Empty:
                return latest
            latest[resource.name] = (kind, resource)

    def tick(self) -> None:
        """Handle queued deletions, then check every listed resource."""
        for kind, resource in self._drain_events().values():
            if kind is ResourceEventType.DELETED:
                self._handle_safely(resource, existing=False)

        try:
            items = self.store.list()
        except Exception as exc:  # noqa: BLE001
            LOG.error("Unable to list DnsUpdate resources; retrying next tick: %s", exc)
            return
        for item in items:
            self._handle_safely(Resource(item), existing=True)

    def _handle_safely(self, resource: Resource, existing: bool) -> None:
        """Handle one resource without letting its failure stop the others."""
        try:
            self.handle(resource, existing)
        except Bind9OperatorError as exc:
            LOG.error("Skipping DnsUpdate %s: %s", resource.name, exc)

    def expected_values(self, record: UpdateRecord) -> list[ExpectedValue]:
        """Return the values ``record`` should resolve to."""
        if record.record is not None:
            return [ExpectedValue(type=record.record.type, value=record.record.contents)]
        try:
            return self.addresses.external_addresses(record.service.name, record.service.namespace)
        except LookupFailure as exc:
            LOG.warning("Service lookup for record %s failed: %s", record.name, exc)
            return []

    def is_satisfied(self, server: str, record: UpdateRecord, expected: list[ExpectedValue]) -> bool:
        """Return True when the live answer contains any expected value."""
        for entry in expected:
            try:
                answers = self.dns_client.resolve(server, entry.type, record.name)
            except LookupFailure as exc:
                LOG.debug("Lookup failed, treating %s as out of sync: %s", record.name, exc)
                continue
            observed = {canonical_value(answer) for answer in answers}
            if canonical_value(entry.value) in observed:
                LOG.debug("Found %s %s for %s on %s", entry.type, entry.value, record.name, server)
                return True
        return False

    def handle(self, resource: Resource, existing: bool) -> list[str]:
        """Submit the update lines needed for one resource and return them."""
        spec = parse_dns_update_spec(resource.spec)
        action = "add" if existing else "delete"
        lines: list[str] = []

        for record in spec.records:
            expected = self.expected_values(record)
            if not expected:
                LOG.warning("No expected values for record %s, skipping", record.name)
                continue
            if existing and self.is_satisfied(spec.dnsserver, record, expected):
                continue
            for entry in expected:
                lines.append(f"update {action} {record.name} {record.ttl} IN {entry.type} {entry.value}")

        if not lines:
            LOG.debug("DnsUpdate %s is in sync", resource.name)
            return lines

        transaction = render_transaction(spec.dnsserver, lines)
        result = self.update_client.submit(spec.dnsserver, transaction, spec.keystring)
        if result.success:
            LOG.info("Sent %d update(s) for %s to %s", len(lines), resource.name, spec.dnsserver)
        else:
            LOG.error(
                "Update for %s failed (rcode %s): %s",
                resource.name,
                result.rcode,
                result.error_text,
            )
        return lines
