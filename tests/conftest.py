"""Shared fixtures and in-memory fakes for the reconciler tests."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import pytest

from bind9_operator.config import DEFAULT_TEMPLATES_DIR, AppConfig
from bind9_operator.models import ExpectedValue, LookupFailure, ResourceStoreError, SubmissionResult


def make_config(tmp_path: Path, **overrides: Any) -> AppConfig:
    """Return a configuration rooted in ``tmp_path``."""
    values: dict[str, Any] = {
        "config_dir": tmp_path / "etc",
        "var_dir": tmp_path / "var",
        "templates_dir": DEFAULT_TEMPLATES_DIR,
        "nameserver1": "ns1.example.com",
        "nameserver2": None,
        "namespace": "default",
        "crd_group": "dns.bind9-operator.io",
        "crd_version": "v1",
        "zone_plural": "dnsseczones",
        "update_plural": "dnsupdates",
        "store": "directory",
        "manifest_dir": tmp_path / "manifests",
        "kubeconfig_mode": "auto",
        "rndc_confgen_bin": "rndc-confgen",
        "rndc_bin": "rndc",
        "restart_strategy": "marker",
        "reconcile_interval": 60.0,
        "event_queue_size": 16,
        "serial_strategy": "coarse",
        "dns_timeout": 1.0,
        "dryrun": True,
        "bind_verbose_output": False,
        "run_reconcilers": ("zone", "update"),
        "log_level": "DEBUG",
    }
    values.update(overrides)
    return AppConfig(**values)


def zone_spec(domain: str, **overrides: Any) -> dict[str, Any]:
    """Return a valid zone spec for ``domain``."""
    spec: dict[str, Any] = {
        "domainName": domain,
        "adminContact": f"admin.{domain}",
        "ttlSeconds": 60,
        "refreshSeconds": 60,
        "retrySeconds": 60,
        "expireSeconds": 600,
        "minimumSeconds": 60,
    }
    spec.update(overrides)
    return spec


def zone_resource(domain: str, status: dict[str, Any] | None = None, **spec_overrides: Any) -> dict[str, Any]:
    """Return a DnssecZone resource as listed by the store."""
    resource: dict[str, Any] = {
        "apiVersion": "dns.bind9-operator.io/v1",
        "kind": "DnssecZone",
        "metadata": {"name": f"zone-{domain.replace('.', '-')}"},
        "spec": zone_spec(domain, **spec_overrides),
    }
    if status is not None:
        resource["status"] = status
    return resource


class FakeStore:
    """In-memory resource store recording status patches."""

    def __init__(self, items: list[dict[str, Any]] | None = None):
        self.items = list(items or [])
        self.patches: list[tuple[str, dict[str, Any]]] = []
        self.fail_patch = False
        self.fail_list = False

    def list(self) -> list[dict[str, Any]]:
        if self.fail_list:
            raise ResourceStoreError("store unavailable")
        return copy.deepcopy(self.items)

    def patch_status(self, resource: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
        if self.fail_patch:
            raise ResourceStoreError("patch rejected")
        name = resource["metadata"]["name"]
        self.patches.append((name, dict(patch)))
        for item in self.items:
            if item["metadata"]["name"] == name:
                status = item.setdefault("status", {})
                for field, value in patch.items():
                    if value is None:
                        status.pop(field, None)
                    else:
                        status[field] = value
        return resource


class FakeAddresses:
    """Service lookup returning fixed addresses per service."""

    def __init__(self, addresses: dict[tuple[str, str], list[ExpectedValue]] | None = None, fail: bool = False):
        self.addresses = addresses or {}
        self.fail = fail

    def external_addresses(self, name: str, namespace: str) -> list[ExpectedValue]:
        if self.fail:
            raise LookupFailure("service lookup failed")
        return list(self.addresses.get((name, namespace), []))


class FakeDnsClient:
    """DNS client answering from a dict keyed by (type, name)."""

    def __init__(self, answers: dict[tuple[str, str], list[str]] | None = None, fail: bool = False):
        self.answers = answers or {}
        self.fail = fail
        self.queries: list[tuple[str, str, str]] = []

    def resolve(self, server: str, rtype: str, name: str) -> list[str]:
        self.queries.append((server, rtype, name))
        if self.fail:
            raise LookupFailure("SERVFAIL")
        return list(self.answers.get((rtype, name), []))


class FakeUpdateClient:
    """Update client recording submitted transactions."""

    def __init__(self, results: dict[str, SubmissionResult] | None = None):
        self.results = results or {}
        self.submissions: list[tuple[str, str, str]] = []

    def submit(self, server: str, transaction: str, key_string: str) -> SubmissionResult:
        self.submissions.append((server, transaction, key_string))
        return self.results.get(key_string, SubmissionResult(success=True, rcode="NOERROR"))


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    return make_config(tmp_path)
