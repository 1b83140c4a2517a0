"""Tests for the geo firewall orchestration.

ipset, iptables and HTTP helpers are replaced wholesale; these tests only
check ordering, arguments and the safety gates (root, confirmation).
"""

from __future__ import annotations

import os
import stat
from pathlib import Path
from unittest.mock import DEFAULT, MagicMock, patch

import pytest

from geowall import firewall
from geowall.config import Config
from geowall.firewall import FirewallError
from geowall.ipset_utils import IpsetError


@pytest.fixture
def as_root():
    with patch("geowall.firewall.os.geteuid", return_value=0) as geteuid:
        yield geteuid


@pytest.fixture
def tools():
    with patch.multiple(
        "geowall.ipset_utils",
        check_available=DEFAULT,
        ensure_set=DEFAULT,
        add_entries=DEFAULT,
        replace_set=DEFAULT,
        list_set=DEFAULT,
    ) as ipset, patch.multiple(
        "geowall.iptables_utils",
        check_available=DEFAULT,
        backup_rules=DEFAULT,
        apply_input_rules=DEFAULT,
        restore_rules=DEFAULT,
        chain_policy=DEFAULT,
        list_input_rules=DEFAULT,
    ) as ipt, patch.multiple(
        "geowall.geoip",
        detect_public_ip=DEFAULT,
        fetch_zone=DEFAULT,
    ) as geo:
        geo["detect_public_ip"].return_value = "203.0.113.7"
        geo["fetch_zone"].return_value = ["1.0.1.0/24", "1.0.2.0/23"]
        ipset["replace_set"].return_value = 2
        ipset["list_set"].return_value = ["198.51.100.10", "203.0.113.7"]
        ipt["backup_rules"].return_value = Path("/root/firewall-backups/iptables-20240101-000000.rules")
        ipt["chain_policy"].return_value = "ACCEPT"
        ipt["list_input_rules"].return_value = ["Chain INPUT (policy ACCEPT)"]
        yield {**ipset, **{f"ipt_{k}": v for k, v in ipt.items()}, **geo}


class TestRequireRoot:
    def test_non_root_refused(self, config: Config, tools: dict) -> None:
        with patch("geowall.firewall.os.geteuid", return_value=1000):
            with pytest.raises(FirewallError, match="root"):
                firewall.setup(config, assume_yes=True)
        tools["ensure_set"].assert_not_called()
        tools["ipt_apply_input_rules"].assert_not_called()


class TestSetup:
    def test_test_mode_only_reports(self, config: Config, tools: dict, as_root: MagicMock, capsys) -> None:
        with patch("geowall.firewall.shutil.which", side_effect=lambda t: "/usr/sbin/iptables" if t == "iptables" else None):
            assert firewall.setup(config, test_mode=True) == 0
        out = capsys.readouterr().out
        assert "✓ iptables" in out
        assert "✗ ipset" in out
        tools["ensure_set"].assert_not_called()
        tools["ipt_apply_input_rules"].assert_not_called()

    def test_full_flow(self, config: Config, tools: dict, as_root: MagicMock) -> None:
        order = []
        tools["replace_set"].side_effect = lambda *a, **k: order.append("country") or 2
        tools["ipt_backup_rules"].side_effect = lambda *a, **k: order.append("backup") or Path("b.rules")
        tools["ipt_apply_input_rules"].side_effect = lambda *a, **k: order.append("apply")

        assert firewall.setup(config, assume_yes=True) == 0

        tools["ensure_set"].assert_called_once_with("cn_whitelist", "hash:ip")
        tools["add_entries"].assert_called_once_with("cn_whitelist", ["198.51.100.10", "203.0.113.7"])
        tools["fetch_zone"].assert_called_once_with(config.firewall.ip_list_url)
        tools["replace_set"].assert_called_once_with("china_ipset", ["1.0.1.0/24", "1.0.2.0/23"], "hash:net")
        tools["ipt_backup_rules"].assert_called_once_with(config.firewall.backup_dir)
        tools["ipt_apply_input_rules"].assert_called_once_with(
            "cn_whitelist", "china_ipset", log_prefix="[FW-BLOCK]", log_limit="10/min"
        )
        assert order == ["country", "backup", "apply"]

    def test_detected_ip_not_duplicated(self, config: Config, tools: dict, as_root: MagicMock) -> None:
        tools["detect_public_ip"].return_value = "198.51.100.10"
        firewall.setup(config, assume_yes=True)
        tools["add_entries"].assert_called_once_with("cn_whitelist", ["198.51.100.10"])

    def test_unknown_public_ip(self, config: Config, tools: dict, as_root: MagicMock) -> None:
        tools["detect_public_ip"].return_value = None
        firewall.setup(config, assume_yes=True)
        tools["add_entries"].assert_called_once_with("cn_whitelist", ["198.51.100.10"])

    def test_logging_disabled(self, config: Config, tools: dict, as_root: MagicMock) -> None:
        config.firewall.enable_logging = False
        firewall.setup(config, assume_yes=True)
        assert tools["ipt_apply_input_rules"].call_args.kwargs["log_prefix"] is None

    def test_declined_confirmation_aborts(self, config: Config, tools: dict, as_root: MagicMock) -> None:
        with pytest.raises(FirewallError, match="annullata"):
            firewall.setup(config, input_func=lambda prompt: "no")
        tools["ensure_set"].assert_not_called()
        tools["ipt_backup_rules"].assert_not_called()
        tools["ipt_apply_input_rules"].assert_not_called()

    def test_no_terminal_aborts(self, config: Config, tools: dict, as_root: MagicMock) -> None:
        def closed_stdin(prompt):
            raise EOFError

        with pytest.raises(FirewallError, match="annullata"):
            firewall.setup(config, input_func=closed_stdin)
        tools["ipt_apply_input_rules"].assert_not_called()

    def test_typed_yes_proceeds(self, config: Config, tools: dict, as_root: MagicMock) -> None:
        prompts = []
        firewall.setup(config, input_func=lambda prompt: prompts.append(prompt) or "yes\n")
        assert len(prompts) == 1
        tools["ipt_apply_input_rules"].assert_called_once()

    def test_missing_tool(self, config: Config, tools: dict, as_root: MagicMock) -> None:
        tools["check_available"].side_effect = IpsetError("Comando 'ipset' non trovato.")
        with pytest.raises(FirewallError, match="ipset"):
            firewall.setup(config, assume_yes=True)

    def test_self_check_warns_on_forward_drop(self, config: Config, tools: dict, as_root: MagicMock, capsys) -> None:
        tools["ipt_chain_policy"].return_value = "DROP"
        firewall.setup(config, assume_yes=True)
        out = capsys.readouterr().out
        assert "DROP" in out
        assert "iptables -F INPUT && iptables -P INPUT ACCEPT" in out


class TestUpdate:
    def test_reloads_country_set(self, config: Config, tools: dict, as_root: MagicMock) -> None:
        assert firewall.update(config) == 0
        tools["replace_set"].assert_called_once_with("china_ipset", ["1.0.1.0/24", "1.0.2.0/23"], "hash:net")
        tools["ipt_apply_input_rules"].assert_not_called()


class TestInstallCron:
    def test_writes_executable_script(self, config: Config) -> None:
        path = firewall.install_cron(config)
        assert path == Path(config.firewall.cron_script)
        content = path.read_text()
        assert content.startswith("#!/bin/sh\n")
        assert f"--config {config.path} firewall update" in content
        assert os.stat(path).st_mode & stat.S_IXUSR

    def test_without_config_path(self) -> None:
        assert "--config" not in firewall.render_cron_script(None)


class TestRollback:
    def test_latest_backup_restored(self, config: Config, tools: dict, as_root: MagicMock) -> None:
        backup_dir = Path(config.firewall.backup_dir)
        backup_dir.mkdir()
        (backup_dir / "iptables-20240101-000000.rules").write_text("a")
        (backup_dir / "iptables-20240102-000000.rules").write_text("b")
        with patch("geowall.iptables_utils.restore_rules") as restore:
            restored = firewall.rollback(config)
        assert restored.name == "iptables-20240102-000000.rules"
        restore.assert_called_once_with(restored)

    def test_explicit_backup(self, config: Config, tools: dict, as_root: MagicMock, tmp_path: Path) -> None:
        backup = tmp_path / "manual.rules"
        backup.write_text("x")
        firewall.rollback(config, str(backup))
        tools["ipt_restore_rules"].assert_called_once_with(backup)

    def test_no_backup(self, config: Config, tools: dict, as_root: MagicMock) -> None:
        with pytest.raises(FirewallError, match="backup"):
            firewall.rollback(config)
