"""Core data models used by bind9-operator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

KEY_FIELDS = ("keyName", "dnssecKey", "dnssecAlgorithm")


class ResourceEventType(str, Enum):
    """Watch event types delivered by the resource store."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


def _non_empty(value: Any) -> bool:
    """Return True for a string with at least one non-blank character."""
    return isinstance(value, str) and bool(value.strip())


@dataclass(frozen=True)
class DnssecKey:
    """TSIG key material as stored in a key file or a resource status."""

    key_name: str | None
    algorithm: str | None
    secret: str | None

    @classmethod
    def from_status(cls, status: Mapping[str, Any] | None) -> DnssecKey | None:
        """Build a key from the three status fields, if a status exists."""
        if not status:
            return None
        return cls(
            key_name=status.get("keyName"),
            algorithm=status.get("dnssecAlgorithm"),
            secret=status.get("dnssecKey"),
        )

    def is_valid(self) -> bool:
        """Return True when all three fields are present and non-empty."""
        return all(_non_empty(value) for value in (self.key_name, self.algorithm, self.secret))

    def matches(self, other: DnssecKey | None) -> bool:
        """Return True when both keys are valid and every field is equal."""
        if other is None or not self.is_valid() or not other.is_valid():
            return False
        return (self.key_name, self.algorithm, self.secret) == (other.key_name, other.algorithm, other.secret)


@dataclass(frozen=True)
class ZoneStatus:
    """Status written back to a zone resource."""

    key_name: str | None = None
    dnssec_key: str | None = None
    dnssec_algorithm: str | None = None
    error: str | None = None

    @classmethod
    def from_key(cls, key: DnssecKey) -> ZoneStatus:
        """Return the status that publishes the given key."""
        return cls(key_name=key.key_name, dnssec_key=key.secret, dnssec_algorithm=key.algorithm)

    @classmethod
    def from_error(cls, message: str) -> ZoneStatus:
        """Return a status that only reports an error."""
        return cls(error=message)

    def to_dict(self) -> dict[str, str | None]:
        """Return the status in resource field names."""
        return {
            "keyName": self.key_name,
            "dnssecKey": self.dnssec_key,
            "dnssecAlgorithm": self.dnssec_algorithm,
            "error": self.error,
        }

    def patch_from(self, current: Mapping[str, Any] | None) -> dict[str, str | None]:
        """Return only the fields whose value differs from ``current``.

        An error status carries no key material, so only its ``error`` field is
        compared. A successful status clears a previously reported error.
        """
        current = current or {}
        if self.error is not None:
            if current.get("error") != self.error:
                return {"error": self.error}
            return {}
        patch: dict[str, str | None] = {}
        for name, value in self.to_dict().items():
            if current.get(name) != value:
                patch[name] = value
        return patch


def has_proper_status(status: Mapping[str, Any] | None) -> bool:
    """Return True when a status carries all three key fields."""
    if not status:
        return False
    return all(_non_empty(status.get(name)) for name in KEY_FIELDS)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating a zone specification."""

    valid: bool
    error: str | None = None

    @classmethod
    def ok(cls) -> ValidationResult:
        """Return a successful result."""
        return cls(valid=True)

    @classmethod
    def failed(cls, message: str) -> ValidationResult:
        """Return a failed result carrying the message."""
        return cls(valid=False, error=message)


@dataclass(frozen=True)
class KeyResult:
    """Key returned by the key lifecycle manager."""

    key: DnssecKey
    changed: bool


@dataclass(frozen=True)
class EmitResult:
    """Change flags of the per-zone artifacts."""

    conf_changed: bool
    zone_file_changed: bool

    @property
    def changed(self) -> bool:
        """Return True when any artifact was rewritten."""
        return self.conf_changed or self.zone_file_changed


@dataclass(frozen=True)
class ZoneResult:
    """Outcome of adding or updating a zone."""

    changed: bool
    status: ZoneStatus
    error: str | None = None


@dataclass(frozen=True)
class RemoveResult:
    """Outcome of removing a zone."""

    changed: bool


@dataclass(frozen=True)
class ExpectedValue:
    """A single value a DNS record must resolve to."""

    type: str
    value: str


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of submitting an update transaction."""

    success: bool
    error_text: str = ""
    rcode: str | None = None


@dataclass
class Resource:
    """Loosely typed custom resource as returned by the resource store."""

    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str | None:
        """Return ``metadata.name``."""
        return (self.raw.get("metadata") or {}).get("name")

    @property
    def spec(self) -> dict[str, Any]:
        """Return the resource spec or an empty dict."""
        return self.raw.get("spec") or {}

    @property
    def status(self) -> dict[str, Any] | None:
        """Return the resource status, if any."""
        return self.raw.get("status") or None

    @property
    def domain_name(self) -> str | None:
        """Return ``spec.domainName`` when it is a non-empty string."""
        value = self.spec.get("domainName")
        return value.strip().lower() if _non_empty(value) else None


class Bind9OperatorError(Exception):
    """Base exception for bind9-operator."""


class ValidationError(Bind9OperatorError):
    """Raised when a resource spec is invalid."""


class KeyGenerationError(Bind9OperatorError):
    """Raised when a new TSIG key cannot be generated."""


class LookupFailure(Bind9OperatorError):
    """Raised when a DNS query or service lookup fails."""


class ResourceStoreError(Bind9OperatorError):
    """Raised when the resource store cannot be read or patched."""
