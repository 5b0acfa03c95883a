"""TSIG key files and the key lifecycle state machine."""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from typing import Any, Mapping

from .models import DnssecKey, KeyGenerationError, KeyResult
from .writer import write_atomic

LOG = logging.getLogger("bind9_operator.keys")

DEFAULT_ALGORITHM = "hmac-sha512"
DRYRUN_SECRET = "Fc7zMz2T5KrZjFY2kWbOkwyYOSTGHfu6r9LYTTQH1O64k2qs1k8ZcPVoj34E2AK/A+sHKquLaId89EM0xE8tew=="

KEYFILE_PATTERN = re.compile(
    r'\A\s*key\s+"(?P<name>[^"]+)"\s*\{'
    r"\s*algorithm\s+(?P<algorithm>[^\s;\"]+)\s*;"
    r'\s*secret\s+"(?P<secret>[^"]+)"\s*;'
    r"\s*\}\s*;\s*\Z",
)


def parse_key_file(text: str) -> DnssecKey | None:
    """Parse a BIND key file, returning None when it is malformed."""
    match = KEYFILE_PATTERN.match(text)
    if not match:
        return None
    return DnssecKey(
        key_name=match.group("name"),
        algorithm=match.group("algorithm"),
        secret=match.group("secret"),
    )


def render_key_file(key: DnssecKey) -> str:
    """Return the key file text for a key."""
    return "\n".join(
        [
            f'key "{key.key_name}" {{',
            f"\talgorithm {key.algorithm};",
            f'\tsecret "{key.secret}";',
            "};",
            "",
        ]
    )


class KeyManager:
    """Keeps one zone's key file consistent with the resource status.

    The status is authoritative whenever it holds a valid key: the file is
    regenerated from it, never the other way round. A new key is only
    generated when neither the status nor the file holds a valid key.
    """

    def __init__(
        self,
        key_file: Path,
        key_name: str,
        rndc_confgen_bin: str,
        dryrun: bool = False,
        permissions: int | None = None,
    ):
        """Store the key file location and how to generate keys."""
        if not key_name:
            raise ValueError("key_name is required.")
        self.key_file = key_file
        self.key_name = key_name
        self.rndc_confgen_bin = rndc_confgen_bin
        self.dryrun = dryrun
        self.permissions = permissions

    def load_key_file(self) -> DnssecKey | None:
        """Return the key stored on disk, or None when missing or malformed."""
        if not self.key_file.exists():
            LOG.debug("Key file %s does not exist", self.key_file)
            return None
        try:
            text = self.key_file.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            LOG.warning("Unable to read key file %s: %s", self.key_file, exc)
            return None
        key = parse_key_file(text)
        if key is None:
            LOG.warning("Key file %s is malformed; treating it as missing", self.key_file)
        return key

    def get_key(self, status: Mapping[str, Any] | None) -> KeyResult:
        """Return the zone key, rewriting or generating the key file as needed."""
        file_key = self.load_key_file()
        status_key = DnssecKey.from_status(status)
        valid_file_key = file_key is not None and file_key.is_valid()
        valid_status_key = status_key is not None and status_key.is_valid()
        LOG.debug(
            "get_key(%s): valid_file_key=%s valid_status_key=%s",
            self.key_name,
            valid_file_key,
            valid_status_key,
        )

        if valid_status_key:
            if status_key.matches(file_key):
                return KeyResult(key=file_key, changed=False)
            LOG.info("Key file %s differs from status; rewriting it from status", self.key_file)
            write_atomic(self.key_file, render_key_file(status_key), self.permissions)
            return KeyResult(key=self._reload(), changed=True)

        if valid_file_key:
            return KeyResult(key=file_key, changed=False)

        LOG.info("No valid key for %s; generating a new one at %s", self.key_name, self.key_file)
        self.generate()
        return KeyResult(key=self._reload(), changed=True)

    def generate(self) -> None:
        """Create a brand-new key file."""
        if self.dryrun:
            LOG.debug("Dry-run: writing placeholder key to %s", self.key_file)
            placeholder = DnssecKey(key_name=self.key_name, algorithm=DEFAULT_ALGORITHM, secret=DRYRUN_SECRET)
            write_atomic(self.key_file, render_key_file(placeholder), self.permissions)
            return

        self.key_file.parent.mkdir(parents=True, exist_ok=True)
        cmd = [
            self.rndc_confgen_bin,
            "-a",
            "-A",
            DEFAULT_ALGORITHM,
            "-k",
            self.key_name,
            "-c",
            str(self.key_file),
        ]
        LOG.debug("Running %s", " ".join(cmd))
        try:
            subprocess.run(cmd, check=True, capture_output=True, text=True)
        except subprocess.CalledProcessError as exc:
            raise KeyGenerationError(
                f"{cmd[0]} exited with status {exc.returncode}: {(exc.stderr or '').strip()}"
            ) from exc
        except OSError as exc:
            raise KeyGenerationError(f"Unable to run {cmd[0]}: {exc}") from exc
        if self.permissions is not None and self.key_file.exists():
            self.key_file.chmod(self.permissions)

    def _reload(self) -> DnssecKey:
        """Load the key file that was just written."""
        key = self.load_key_file()
        if key is None or not key.is_valid():
            raise KeyGenerationError(f"Key file {self.key_file} is not valid after writing it.")
        return key
