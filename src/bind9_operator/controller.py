"""High-level orchestration for bind9-operator."""

from __future__ import annotations

import logging
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from typing import Callable

from kubernetes import client

from .config import AppConfig
from .dnsupdate import DnsQueryClient, DynamicUpdateClient
from .dnsupdate_reconciler import DnsUpdateReconciler
from .emitter import BindConfigEmitter
from .kube import CustomResourceStore, ServiceAddressLookup, load_kube_config
from .loop import ReconcileLoop
from .manifests import ManifestDirectoryStore
from .models import Bind9OperatorError, ExpectedValue
from .zone_reconciler import ZoneReconciler

LOG = logging.getLogger("bind9_operator")

RESTART_MARKER = "bind-restart.requested"
ZONE_KIND = "DnssecZone"
UPDATE_KIND = "DnsUpdate"
WATCH_JOIN_TIMEOUT = 10.0


def configure_logging(level: str) -> None:
    """Configure logging output."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def build_restart_callback(config: AppConfig) -> Callable[[], None]:
    """Return the callback that asks BIND to pick up new configuration."""
    if config.restart_strategy == "rndc":

        def _rndc_reload() -> None:
            cmd = [config.rndc_bin, "reload"]
            if config.dryrun:
                LOG.info("Dry-run, would run %s", " ".join(cmd))
                return
            LOG.info("Running %s", " ".join(cmd))
            try:
                subprocess.run(cmd, check=True, capture_output=True, text=True)
            except subprocess.CalledProcessError as exc:
                LOG.error("%s failed with status %s: %s", " ".join(cmd), exc.returncode, exc.stderr)
            except OSError as exc:
                LOG.error("Unable to run %s: %s", cmd[0], exc)

        return _rndc_reload

    marker = config.config_dir / RESTART_MARKER

    def _touch_marker() -> None:
        LOG.info("BIND restart requested, creating %s", marker)
        marker.touch()

    return _touch_marker


class _NoServiceLookup:
    """Service lookup used when no cluster is available."""

    def external_addresses(self, name: str, namespace: str) -> list[ExpectedValue]:
        LOG.warning("No cluster access to look up service %s/%s", namespace, name)
        return []


@dataclass
class Operator:
    """Reconcilers and the threads that drive them."""

    config: AppConfig
    zone_reconciler: ZoneReconciler | None = None
    update_reconciler: DnsUpdateReconciler | None = None
    loops: list[ReconcileLoop] = field(default_factory=list)
    watchers: list[tuple[object, Callable]] = field(default_factory=list)
    watch_threads: list[threading.Thread] = field(default_factory=list)
    stop_event: threading.Event = field(default_factory=threading.Event)

    def run_once(self) -> None:
        """Run a single tick of every configured reconciler."""
        for loop in self.loops:
            loop.run_once()

    def start(self) -> None:
        """Start watch threads and reconcile loops."""
        for store, callback in self.watchers:
            thread = threading.Thread(
                target=store.watch,
                args=(callback, self.stop_event),
                name=f"watch-{store!r}",
                daemon=True,
            )
            thread.start()
            self.watch_threads.append(thread)
        for loop in self.loops:
            loop.start()

    def stop(self, timeout: float = WATCH_JOIN_TIMEOUT) -> None:
        """Stop watches and loops; in-flight ticks finish first."""
        self.stop_event.set()
        for loop in self.loops:
            loop.stop()
        for thread in self.watch_threads:
            thread.join(timeout)
            if thread.is_alive():
                LOG.warning("Watch thread %s did not stop within %ss", thread.name, timeout)
        self.watch_threads = []

    def run_forever(self) -> None:
        """Run until SIGINT or SIGTERM."""

        def _handle_signal(signum, _frame) -> None:
            LOG.info("Received signal %s, shutting down", signum)
            self.stop_event.set()

        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)
        self.start()
        self.stop_event.wait()
        self.stop()
        LOG.info("Shutdown complete")


def _build_stores(config: AppConfig):
    """Return (zone store, update store, service lookup) for the configured backend."""
    if config.store == "directory":
        return (
            ManifestDirectoryStore(config.manifest_dir, ZONE_KIND),
            ManifestDirectoryStore(config.manifest_dir, UPDATE_KIND),
            _NoServiceLookup(),
        )

    load_kube_config(config.kubeconfig_mode)
    custom_api = client.CustomObjectsApi()
    return (
        CustomResourceStore(custom_api, config.crd_group, config.crd_version, config.namespace, config.zone_plural),
        CustomResourceStore(custom_api, config.crd_group, config.crd_version, config.namespace, config.update_plural),
        ServiceAddressLookup(client.CoreV1Api()),
    )


def build_operator(config: AppConfig) -> Operator:
    """Create the reconcilers selected by the configuration."""
    if not config.run_reconcilers:
        raise Bind9OperatorError("No reconcilers selected.")
    zone_store, update_store, service_lookup = _build_stores(config)
    operator = Operator(config=config)

    if "zone" in config.run_reconcilers:
        emitter = BindConfigEmitter(config)
        operator.zone_reconciler = ZoneReconciler(
            store=zone_store,
            emitter=emitter,
            restart_callback=build_restart_callback(config),
            event_queue_size=config.event_queue_size,
        )
        operator.loops.append(ReconcileLoop("zone", operator.zone_reconciler.tick, config.reconcile_interval))
        if hasattr(zone_store, "watch"):
            operator.watchers.append((zone_store, operator.zone_reconciler.on_resource_event))

    if "update" in config.run_reconcilers:
        queries = DnsQueryClient(timeout=config.dns_timeout)
        operator.update_reconciler = DnsUpdateReconciler(
            store=update_store,
            addresses=service_lookup,
            dns_client=queries,
            update_client=DynamicUpdateClient(queries, dryrun=config.dryrun),
            event_queue_size=config.event_queue_size,
        )
        operator.loops.append(ReconcileLoop("update", operator.update_reconciler.tick, config.reconcile_interval))
        if hasattr(update_store, "watch"):
            operator.watchers.append((update_store, operator.update_reconciler.on_resource_event))

    return operator
