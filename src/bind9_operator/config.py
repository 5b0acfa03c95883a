"""Environment-driven configuration loader."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
RECONCILER_NAMES = {"zone", "update"}


@dataclass(frozen=True)
class AppConfig:
    """Application-wide configuration values."""

    config_dir: Path
    var_dir: Path
    templates_dir: Path
    nameserver1: str
    nameserver2: str | None
    namespace: str
    crd_group: str
    crd_version: str
    zone_plural: str
    update_plural: str
    store: str
    manifest_dir: Path
    kubeconfig_mode: str
    rndc_confgen_bin: str
    rndc_bin: str
    restart_strategy: str
    reconcile_interval: float
    event_queue_size: int
    serial_strategy: str
    dns_timeout: float
    dryrun: bool
    bind_verbose_output: bool
    run_reconcilers: tuple[str, ...]
    log_level: str


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Return a boolean parsed from a string."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_choice(name: str, value: str, choices: set[str]) -> str:
    """Return ``value`` lowercased, or raise when it is not an allowed choice."""
    lowered = value.strip().lower()
    if lowered not in choices:
        raise ValueError(f"{name} must be one of {', '.join(sorted(choices))}.")
    return lowered


def parse_reconcilers(value: str) -> tuple[str, ...]:
    """Parse a comma-separated reconciler list such as ``zone,update``."""
    names = tuple(part.strip().lower() for part in value.split(",") if part.strip())
    unknown = set(names) - RECONCILER_NAMES
    if unknown:
        raise ValueError(f"Unknown reconcilers: {', '.join(sorted(unknown))}.")
    return names


def _positive_float(name: str, value: str) -> float:
    """Parse a strictly positive float setting."""
    try:
        parsed = float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number.") from exc
    if parsed <= 0:
        raise ValueError(f"{name} must be greater than zero.")
    return parsed


def load_config() -> AppConfig:
    """Load configuration values from the environment (and .env)."""
    load_dotenv()
    config_dir = Path(os.getenv("CONFIG_DIR", "/etc/bind")).resolve()
    var_dir = Path(os.getenv("VAR_DIR", "/var/bind")).resolve()
    templates_dir = Path(os.getenv("TEMPLATES_DIR", str(DEFAULT_TEMPLATES_DIR))).resolve()
    if not templates_dir.is_dir():
        raise ValueError(f"TEMPLATES_DIR {templates_dir} does not exist.")

    return AppConfig(
        config_dir=config_dir,
        var_dir=var_dir,
        templates_dir=templates_dir,
        nameserver1=os.getenv("NAMESERVER1", "ns1.example.com"),
        nameserver2=os.getenv("NAMESERVER2") or None,
        namespace=os.getenv("NAMESPACE", "default"),
        crd_group=os.getenv("CRD_GROUP", "dns.bind9-operator.io"),
        crd_version=os.getenv("CRD_VERSION", "v1"),
        zone_plural=os.getenv("ZONE_PLURAL", "dnsseczones"),
        update_plural=os.getenv("UPDATE_PLURAL", "dnsupdates"),
        store=_parse_choice("STORE", os.getenv("STORE", "kubernetes"), {"kubernetes", "directory"}),
        manifest_dir=Path(os.getenv("MANIFEST_DIR", "manifests")).resolve(),
        kubeconfig_mode=_parse_choice(
            "KUBECONFIG_MODE", os.getenv("KUBECONFIG_MODE", "auto"), {"auto", "incluster", "kubeconfig"}
        ),
        rndc_confgen_bin=os.getenv("RNDC_CONFGEN_BIN", "/usr/sbin/rndc-confgen"),
        rndc_bin=os.getenv("RNDC_BIN", "rndc"),
        restart_strategy=_parse_choice(
            "RESTART_STRATEGY", os.getenv("RESTART_STRATEGY", "marker"), {"marker", "rndc"}
        ),
        reconcile_interval=_positive_float("RECONCILE_INTERVAL", os.getenv("RECONCILE_INTERVAL", "60")),
        event_queue_size=int(os.getenv("EVENT_QUEUE_SIZE", "1024")),
        serial_strategy=_parse_choice(
            "SERIAL_STRATEGY", os.getenv("SERIAL_STRATEGY", "coarse"), {"coarse", "epoch"}
        ),
        dns_timeout=_positive_float("DNS_TIMEOUT", os.getenv("DNS_TIMEOUT", "5")),
        dryrun=_parse_bool(os.getenv("DRYRUN"), default=False),
        bind_verbose_output=_parse_bool(os.getenv("BIND_VERBOSE_OUTPUT"), default=False),
        run_reconcilers=parse_reconcilers(os.getenv("RUN_RECONCILERS", "zone,update")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
