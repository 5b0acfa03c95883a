"""Zone schema, validation and rendering of per-zone artifacts."""

from __future__ import annotations

import re
import time
from pathlib import Path
from typing import Any, Iterable, Mapping

import dns.exception
import dns.name
from jinja2 import Environment, FileSystemLoader, StrictUndefined
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .models import ValidationResult

LABEL_PATTERN = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")
SERIAL_PATTERN = re.compile(r"(@\s+IN\s+SOA\s+[^(]+\(\s*)\d+")
IGNORED_SERIAL = "__ignore_changed_serial_number__"
VERBOSE_LOG_CATEGORIES = (
    "default",
    "general",
    "database",
    "security",
    "config",
    "resolver",
    "xfer-in",
    "xfer-out",
    "notify",
    "client",
    "unmatched",
    "queries",
    "network",
    "update",
    "dispatch",
    "dnssec",
    "lame-servers",
)


def is_valid_domain_name(name: Any) -> bool:
    """Return True for a syntactically valid, relative DNS name with two or more labels."""
    if not isinstance(name, str) or not name or len(name) > 253 or name.endswith("."):
        return False
    labels = name.split(".")
    if len(labels) < 2 or not all(LABEL_PATTERN.match(label) for label in labels):
        return False
    if labels[-1].isdigit():
        return False
    try:
        dns.name.from_text(name)
    except dns.exception.DNSException:
        return False
    return True


class ZoneSpec(BaseModel):
    """Schema of a zone resource's spec."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    domain_name: str = Field(alias="domainName")
    admin_contact: str = Field(alias="adminContact")
    ttl_seconds: int = Field(alias="ttlSeconds", ge=0)
    refresh_seconds: int = Field(alias="refreshSeconds", ge=0)
    retry_seconds: int = Field(alias="retrySeconds", ge=0)
    expire_seconds: int = Field(alias="expireSeconds", ge=0)
    minimum_seconds: int = Field(alias="minimumSeconds", ge=0)

    @field_validator("domain_name")
    @classmethod
    def _valid_domain(cls, value: str) -> str:
        """Reject names that are not valid DNS names."""
        if not is_valid_domain_name(value):
            raise ValueError(f"'{value}' is not a valid DNS name")
        return value.lower()

    @field_validator("admin_contact")
    @classmethod
    def _non_empty_contact(cls, value: str) -> str:
        """Reject blank admin contacts."""
        stripped = value.strip().rstrip(".")
        if not stripped:
            raise ValueError("must be a non-empty string")
        return stripped


def _format_errors(exc: PydanticValidationError) -> str:
    """Flatten pydantic errors into one message."""
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error["loc"]) or "spec"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def validate_zone_spec(data: Mapping[str, Any] | None, nameserver1: str | None = None) -> ValidationResult:
    """Validate a raw zone spec without raising."""
    if nameserver1 is not None and not is_valid_domain_name(nameserver1.rstrip(".")):
        return ValidationResult.failed(f"Invalid primary name server '{nameserver1}'")
    try:
        ZoneSpec.model_validate(dict(data or {}))
    except PydanticValidationError as exc:
        domain = (data or {}).get("domainName")
        return ValidationResult.failed(f"Invalid zone spec for {domain}: {_format_errors(exc)}")
    return ValidationResult.ok()


def suggest_serial(strategy: str, now: float | None = None) -> int:
    """Return a time-derived SOA serial.

    ``coarse`` counts six-second intervals since the epoch, ``epoch`` counts
    seconds.
    """
    current = time.time() if now is None else now
    if strategy == "epoch":
        return int(current)
    return int(current // 6)


def mask_serial(text: str) -> str:
    """Replace the SOA serial so it is ignored by change detection."""
    return SERIAL_PATTERN.sub(lambda match: match.group(1) + IGNORED_SERIAL, text)


def build_environment(templates_dir: Path) -> Environment:
    """Return the jinja2 environment used for all BIND artifacts."""
    return Environment(
        loader=FileSystemLoader(str(templates_dir)),
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        autoescape=False,
    )


def render_zone_directive(env: Environment, domain_name: str, zone_file: Path, key_name: str | None) -> str:
    """Render the ``zone "<name>" { ... };`` block."""
    template = env.get_template("zone.conf.j2")
    return template.render(domain_name=domain_name, zone_file=str(zone_file), key_name=key_name or "")


def render_zone_file(
    env: Environment,
    zone: ZoneSpec,
    serial: int,
    nameserver1: str,
    nameserver2: str | None = None,
) -> str:
    """Render the zone data file (SOA and NS records)."""
    template = env.get_template("zone.db.j2")
    return template.render(
        zone=zone,
        serial=serial,
        nameserver1=nameserver1.rstrip("."),
        nameserver2=(nameserver2 or "").rstrip("."),
    )


def render_named_conf(
    env: Environment,
    var_dir: Path,
    key_files: Iterable[Path],
    conf_files: Iterable[Path],
    verbose: bool = False,
) -> str:
    """Render the top-level ``named.conf``."""
    template = env.get_template("named.conf.j2")
    return template.render(
        var_dir=str(var_dir),
        key_files=sorted(str(path) for path in key_files),
        conf_files=sorted(str(path) for path in conf_files),
        verbose=verbose,
        log_categories=VERBOSE_LOG_CATEGORIES,
    )
