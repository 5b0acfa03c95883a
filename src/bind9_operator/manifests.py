"""A resource store backed by YAML manifests in a local directory."""

from __future__ import annotations

import copy
import logging
import threading
from pathlib import Path
from typing import Any

import yaml

from .models import ResourceStoreError

LOG = logging.getLogger("bind9_operator.manifests")


class ManifestDirectoryStore:
    """Serves resources of one kind from ``*.yaml`` files.

    Statuses are kept in memory and overlaid on every listing, so the
    manifests on disk are never modified. There is no watch: changes are
    picked up by the next tick.
    """

    def __init__(self, directory: Path, kind: str):
        self.directory = directory
        self.kind = kind
        self._statuses: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"ManifestDirectoryStore({self.kind} in {self.directory})"

    def _load_documents(self, path: Path) -> list[dict[str, Any]]:
        """Return the YAML documents of ``path`` that describe ``self.kind``."""
        try:
            documents = list(yaml.safe_load_all(path.read_text(encoding="utf-8")))
        except (OSError, yaml.YAMLError) as exc:
            LOG.warning("Skipping unreadable manifest %s: %s", path, exc)
            return []
        return [doc for doc in documents if isinstance(doc, dict) and doc.get("kind") == self.kind]

    def list(self) -> list[dict[str, Any]]:
        """Return all resources of the configured kind."""
        if not self.directory.is_dir():
            raise ResourceStoreError(f"Manifest directory {self.directory} does not exist.")
        items = []
        for path in sorted(self.directory.glob("*.yaml")):
            for document in self._load_documents(path):
                name = (document.get("metadata") or {}).get("name")
                with self._lock:
                    status = self._statuses.get(name)
                if status is not None:
                    document = {**document, "status": status}
                items.append(document)
        return items

    def patch_status(self, resource: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
        """Merge ``patch`` into the remembered status; ``None`` removes a field."""
        name = (resource.get("metadata") or {}).get("name")
        if not name:
            raise ResourceStoreError("Cannot patch the status of a resource without metadata.name.")
        with self._lock:
            status = dict(self._statuses.get(name) or resource.get("status") or {})
            for field, value in patch.items():
                if value is None:
                    status.pop(field, None)
                else:
                    status[field] = value
            self._statuses[name] = status
        patched = copy.deepcopy(resource)
        patched["status"] = status
        return patched
