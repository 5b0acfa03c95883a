"""Generate BIND configuration, zone files and keys for zone resources."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping

from .config import AppConfig
from .keys import KeyManager
from .models import EmitResult, KeyResult, ZoneResult, ZoneStatus
from .writer import conditional_update
from .zone import (
    ZoneSpec,
    build_environment,
    is_valid_domain_name,
    mask_serial,
    render_named_conf,
    render_zone_directive,
    render_zone_file,
    suggest_serial,
    validate_zone_spec,
)

LOG = logging.getLogger("bind9_operator.emitter")

FILE_PERMISSIONS = 0o664
DIR_PERMISSIONS = 0o755


class BindConfigEmitter:
    """Owns the generated-files directory and everything written into it."""

    def __init__(self, config: AppConfig):
        """Prepare the output directories for the configured BIND layout."""
        self.config = config
        self.env = build_environment(config.templates_dir)
        self.generated_dir.mkdir(parents=True, exist_ok=True)
        self.generated_dir.chmod(DIR_PERMISSIONS)
        self.config.var_dir.mkdir(parents=True, exist_ok=True)

    @property
    def named_conf_path(self) -> Path:
        return self.config.config_dir / "named.conf"

    @property
    def generated_dir(self) -> Path:
        return self.config.config_dir / "gen"

    def key_file_path(self, domain_name: str) -> Path:
        return self.generated_dir / f"{domain_name}.key"

    def conf_file_path(self, domain_name: str) -> Path:
        return self.generated_dir / f"{domain_name}.conf"

    def zone_file_path(self, domain_name: str) -> Path:
        return self.config.var_dir / f"{domain_name}.db"

    def get_zones(self) -> list[str]:
        """Return the domain names that currently have a directive file."""
        return sorted(path.stem for path in self.generated_dir.glob("*.conf"))

    def generate_named_conf(self) -> bool:
        """Rewrite ``named.conf`` so it includes every emitted key and zone."""
        content = render_named_conf(
            self.env,
            var_dir=self.config.var_dir,
            key_files=self.generated_dir.glob("*.key"),
            conf_files=self.generated_dir.glob("*.conf"),
            verbose=self.config.bind_verbose_output,
        )
        return conditional_update(content, self.named_conf_path, permissions=FILE_PERMISSIONS)

    def get_or_generate_key(self, domain_name: str, status: Mapping[str, Any] | None) -> KeyResult:
        """Return the zone key, reconciling key file and resource status."""
        manager = KeyManager(
            key_file=self.key_file_path(domain_name),
            key_name=domain_name,
            rndc_confgen_bin=self.config.rndc_confgen_bin,
            dryrun=self.config.dryrun,
            permissions=FILE_PERMISSIONS,
        )
        return manager.get_key(status)

    def emit(self, zone: ZoneSpec, key_name: str | None) -> EmitResult:
        """Write the directive block and the zone data file of a zone."""
        zone_file = self.zone_file_path(zone.domain_name)
        directive = render_zone_directive(self.env, zone.domain_name, zone_file, key_name)
        conf_changed = conditional_update(
            directive,
            self.conf_file_path(zone.domain_name),
            permissions=FILE_PERMISSIONS,
        )
        zone_text = render_zone_file(
            self.env,
            zone,
            serial=suggest_serial(self.config.serial_strategy),
            nameserver1=self.config.nameserver1,
            nameserver2=self.config.nameserver2,
        )
        zone_file_changed = conditional_update(zone_text, zone_file, normalizer=mask_serial, permissions=FILE_PERMISSIONS)
        return EmitResult(conf_changed=conf_changed, zone_file_changed=zone_file_changed)

    def add_or_update_zone(self, spec: Mapping[str, Any], status: Mapping[str, Any] | None) -> ZoneResult:
        """Validate a zone spec and bring its key, artifacts and named.conf up to date."""
        validation = validate_zone_spec(spec, nameserver1=self.config.nameserver1)
        if not validation.valid:
            LOG.error("Not processing zone: %s", validation.error)
            return ZoneResult(changed=False, status=ZoneStatus.from_error(validation.error), error=validation.error)

        zone = ZoneSpec.model_validate(dict(spec))
        LOG.debug("Processing zone %s", zone.domain_name)
        key_result = self.get_or_generate_key(zone.domain_name, status)
        emitted = self.emit(zone, key_result.key.key_name)
        named_conf_changed = self.generate_named_conf()

        changed = key_result.changed or emitted.changed or named_conf_changed
        LOG.debug(
            "Zone %s: key changed=%s, zone files changed=%s, named.conf changed=%s",
            zone.domain_name,
            key_result.changed,
            emitted.changed,
            named_conf_changed,
        )
        if changed:
            LOG.info("Zone %s has changed", zone.domain_name)
        return ZoneResult(changed=changed, status=ZoneStatus.from_key(key_result.key))

    def delete_zone(self, domain_name: str) -> bool:
        """Remove all artifacts of a zone; missing files are tolerated."""
        if not is_valid_domain_name(domain_name):
            LOG.error("Not deleting zone with invalid domain name %r", domain_name)
            return False

        deleted = False
        for path in (
            self.key_file_path(domain_name),
            self.conf_file_path(domain_name),
            self.zone_file_path(domain_name),
        ):
            try:
                path.unlink()
                deleted = True
                LOG.debug("Deleted %s", path)
            except FileNotFoundError:
                LOG.debug("Nothing to delete at %s", path)
            except OSError as exc:
                LOG.error("Unable to delete %s: %s", path, exc)

        named_conf_changed = self.generate_named_conf()
        LOG.debug("Deleted zone %s (named.conf changed=%s)", domain_name, named_conf_changed)
        return deleted or named_conf_changed
