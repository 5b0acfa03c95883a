"""Unit tests for environment configuration."""

from pathlib import Path

import pytest

from bind9_operator.config import DEFAULT_TEMPLATES_DIR, load_config, parse_reconcilers

ENV_VARS = [
    "CONFIG_DIR",
    "VAR_DIR",
    "TEMPLATES_DIR",
    "NAMESERVER1",
    "NAMESERVER2",
    "STORE",
    "MANIFEST_DIR",
    "RESTART_STRATEGY",
    "RECONCILE_INTERVAL",
    "SERIAL_STRATEGY",
    "DNS_TIMEOUT",
    "DRYRUN",
    "BIND_VERBOSE_OUTPUT",
    "RUN_RECONCILERS",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Run every test in an empty directory without inherited settings."""
    monkeypatch.chdir(tmp_path)
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self) -> None:
        config = load_config()

        assert config.config_dir == Path("/etc/bind")
        assert config.var_dir == Path("/var/bind")
        assert config.templates_dir == DEFAULT_TEMPLATES_DIR
        assert config.store == "kubernetes"
        assert config.restart_strategy == "marker"
        assert config.serial_strategy == "coarse"
        assert config.run_reconcilers == ("zone", "update")
        assert config.dryrun is False
        assert config.nameserver2 is None

    def test_environment_overrides(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CONFIG_DIR", str(tmp_path / "etc"))
        monkeypatch.setenv("STORE", "Directory")
        monkeypatch.setenv("DRYRUN", "yes")
        monkeypatch.setenv("RUN_RECONCILERS", "zone")
        monkeypatch.setenv("RECONCILE_INTERVAL", "2.5")
        monkeypatch.setenv("NAMESERVER2", "ns2.example.com")

        config = load_config()

        assert config.config_dir == (tmp_path / "etc").resolve()
        assert config.store == "directory"
        assert config.dryrun is True
        assert config.run_reconcilers == ("zone",)
        assert config.reconcile_interval == 2.5
        assert config.nameserver2 == "ns2.example.com"

    @pytest.mark.parametrize(
        ("name", "value", "message"),
        [
            ("STORE", "etcd", "STORE must be one of"),
            ("RESTART_STRATEGY", "reboot", "RESTART_STRATEGY must be one of"),
            ("RECONCILE_INTERVAL", "0", "greater than zero"),
            ("DNS_TIMEOUT", "fast", "must be a number"),
            ("RUN_RECONCILERS", "zone,records", "Unknown reconcilers: records"),
        ],
    )
    def test_rejects_invalid_values(
        self, monkeypatch: pytest.MonkeyPatch, name: str, value: str, message: str
    ) -> None:
        monkeypatch.setenv(name, value)

        with pytest.raises(ValueError, match=message):
            load_config()

    def test_rejects_missing_templates_dir(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TEMPLATES_DIR", str(tmp_path / "missing"))

        with pytest.raises(ValueError, match="TEMPLATES_DIR"):
            load_config()


def test_parse_reconcilers_ignores_blanks() -> None:
    assert parse_reconcilers(" Update , ,zone") == ("update", "zone")
