"""DnsUpdate schema, live DNS queries and dynamic update submission."""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from typing import Any, Mapping

import dns.exception
import dns.name
import dns.query
import dns.rcode
import dns.resolver
import dns.tsig
import dns.tsigkeyring
import dns.update
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .models import Bind9OperatorError, LookupFailure, SubmissionResult, ValidationError

LOG = logging.getLogger("bind9_operator.dnsupdate")


class StaticRecord(BaseModel):
    """A fixed ``type``/``contents`` pair."""

    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(validation_alias=AliasChoices("type", "recordType"))
    contents: str

    @field_validator("type")
    @classmethod
    def _uppercase_type(cls, value: str) -> str:
        """Normalise RR type to uppercase."""
        return value.strip().upper()


class ServiceRef(BaseModel):
    """A LoadBalancer service whose external addresses are published."""

    name: str
    namespace: str = "default"


class UpdateRecord(BaseModel):
    """One record of a DnsUpdate resource."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    ttl: int = Field(default=60, ge=0, validation_alias=AliasChoices("ttl", "ttl_seconds", "ttlSeconds"))
    record: StaticRecord | None = None
    service: ServiceRef | None = None

    @model_validator(mode="after")
    def _exactly_one_source(self) -> UpdateRecord:
        """Require either a static record or a service reference."""
        if (self.record is None) == (self.service is None):
            raise ValueError("exactly one of 'record' or 'service' is required")
        return self


class DnsUpdateSpec(BaseModel):
    """Schema of a DnsUpdate resource's spec."""

    model_config = ConfigDict(populate_by_name=True)

    dnsserver: str
    keystring: str = Field(validation_alias=AliasChoices("keystring", "keyString"))
    records: list[UpdateRecord] = Field(default_factory=list)


def parse_dns_update_spec(data: Mapping[str, Any] | None) -> DnsUpdateSpec:
    """Validate a raw DnsUpdate spec."""
    try:
        return DnsUpdateSpec.model_validate(dict(data or {}))
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid DnsUpdate spec: {exc}") from exc


def is_ip_address(value: str) -> bool:
    """Return True when ``value`` is an IPv4 or IPv6 address."""
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def canonical_value(value: str) -> str:
    """Return a value in the form used to compare DNS answers."""
    return value.strip().strip('"').rstrip(".").lower()


@dataclass(frozen=True)
class UpdateOperation:
    """One ``update add`` or ``update delete`` line of a transaction."""

    action: str
    name: str
    ttl: int
    rtype: str
    value: str


def render_transaction(server: str, lines: list[str]) -> str:
    """Return the transaction text for ``lines`` sent to ``server``."""
    return "\n".join([f"server {server}", *lines, "send", ""])


def parse_transaction(text: str) -> list[UpdateOperation]:
    """Parse the update lines of a transaction; ``server`` and ``send`` are skipped."""
    operations = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line == "send" or line.startswith("server "):
            continue
        parts = line.split(None, 6)
        if len(parts) != 7 or parts[0] != "update" or parts[1] not in {"add", "delete"} or parts[4] != "IN":
            raise ValidationError(f"Malformed update line: {line!r}")
        try:
            ttl = int(parts[3])
        except ValueError as exc:
            raise ValidationError(f"Malformed TTL in update line: {line!r}") from exc
        operations.append(UpdateOperation(action=parts[1], name=parts[2], ttl=ttl, rtype=parts[5], value=parts[6]))
    return operations


def parse_key_string(key_string: str) -> tuple[str, str, str]:
    """Split ``[alg:]name:secret`` into (name, algorithm, secret)."""
    parts = key_string.strip().split(":")
    if len(parts) == 2:
        parts.insert(0, "hmac-md5")
    if len(parts) != 3 or not all(parts):
        raise ValidationError("Key string must have the form [algorithm:]name:secret.")
    algorithm, name, secret = parts
    # dnspython only knows MD5 by its full algorithm name.
    if algorithm.lower() == "hmac-md5":
        algorithm = dns.tsig.HMAC_MD5.to_text()
    return name, algorithm, secret


class DnsQueryClient:
    """Queries a specific name server with dnspython."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    def server_address(self, server: str) -> str:
        """Return ``server`` as an address, resolving a host name if needed."""
        if is_ip_address(server):
            return server
        errors = []
        for rtype in ("A", "AAAA"):
            try:
                answer = dns.resolver.resolve(server, rtype, lifetime=self.timeout)
            except dns.exception.DNSException as exc:
                errors.append(f"{rtype}: {exc}")
                continue
            address = answer[0].to_text()
            LOG.debug("DNS server %s resolved to %s", server, address)
            return address
        raise LookupFailure(f"Unable to resolve DNS server {server}: {'; '.join(errors)}")

    def _resolver(self, server: str) -> dns.resolver.Resolver:
        resolver = dns.resolver.Resolver(configure=False)
        resolver.nameservers = [self.server_address(server)]
        resolver.lifetime = self.timeout
        return resolver

    def resolve(self, server: str, rtype: str, name: str) -> list[str]:
        """Return the answer values for ``name``/``rtype`` at ``server``."""
        resolver = self._resolver(server)
        try:
            answer = resolver.resolve(name, rtype)
        except dns.exception.DNSException as exc:
            raise LookupFailure(f"Unable to resolve {name} ({rtype}) at {server}: {exc}") from exc
        return [rdata.to_text() for rdata in answer]

    def zone_for(self, server: str, name: str) -> dns.name.Name:
        """Return the zone at ``server`` that contains ``name``."""
        try:
            return dns.resolver.zone_for_name(name, resolver=self._resolver(server))
        except dns.exception.DNSException as exc:
            raise LookupFailure(f"Unable to find the zone of {name} at {server}: {exc}") from exc


class DynamicUpdateClient:
    """Sends update transactions as TSIG-signed RFC 2136 messages over TCP.

    Operations are grouped by the zone the server reports for each name and
    sent as one message per zone.
    """

    def __init__(self, queries: DnsQueryClient, dryrun: bool = False, timeout: float = 30.0):
        self.queries = queries
        self.dryrun = dryrun
        self.timeout = timeout

    def submit(self, server: str, transaction: str, key_string: str) -> SubmissionResult:
        """Apply ``transaction`` at ``server``, authenticated with ``key_string``."""
        if self.dryrun:
            LOG.info("Dry-run, would send to %s:\n%s", server, transaction)
            return SubmissionResult(success=True)

        LOG.debug("Sending update to %s:\n%s", server, transaction)
        try:
            operations = parse_transaction(transaction)
            keyname, algorithm, secret = parse_key_string(key_string)
            keyring = dns.tsigkeyring.from_text({keyname: secret})
            address = self.queries.server_address(server)
            by_zone: dict[dns.name.Name, list[UpdateOperation]] = {}
            for operation in operations:
                by_zone.setdefault(self.queries.zone_for(server, operation.name), []).append(operation)

            for zone, zone_operations in by_zone.items():
                update = dns.update.Update(zone, keyring=keyring, keyname=keyname, keyalgorithm=algorithm)
                for operation in zone_operations:
                    name = dns.name.from_text(operation.name)
                    if operation.action == "add":
                        update.add(name, operation.ttl, operation.rtype, operation.value)
                    else:
                        update.delete(name, operation.rtype, operation.value)
                response = dns.query.tcp(update, address, timeout=self.timeout)
                rcode = dns.rcode.to_text(response.rcode())
                if response.rcode() != dns.rcode.NOERROR:
                    return SubmissionResult(success=False, error_text=f"update of zone {zone} refused", rcode=rcode)
                LOG.debug("Zone %s accepted %d update(s)", zone, len(zone_operations))
        except Bind9OperatorError as exc:
            return SubmissionResult(success=False, error_text=str(exc))
        except (dns.exception.DNSException, OSError, ValueError) as exc:
            return SubmissionResult(success=False, error_text=f"{type(exc).__name__}: {exc}")
        return SubmissionResult(success=True, rcode="NOERROR")
