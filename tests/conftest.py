"""Pytest configuration and shared fixtures for geowall tests."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from geowall.config import Config, FirewallConfig, NetwatchConfig, ProbeTarget, TelegramConfig


@pytest.fixture(autouse=True)
def reset_geowall_logger() -> Iterator[None]:
    """Drop handlers installed by setup_logging / the CLI between tests."""
    yield
    logger = logging.getLogger("geowall")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def targets() -> list[ProbeTarget]:
    return [ProbeTarget("8.8.8.8", 53), ProbeTarget("1.1.1.1", 53)]


@pytest.fixture
def netwatch_config(targets: list[ProbeTarget], tmp_path: Path) -> NetwatchConfig:
    return NetwatchConfig(
        targets=targets,
        threshold=3,
        interval=1.0,
        probe_timeout=1.0,
        grace_period=5.0,
        log_file=str(tmp_path / "netwatch.log"),
        shutdown_command=["poweroff"],
    )


@pytest.fixture
def config(netwatch_config: NetwatchConfig, tmp_path: Path) -> Config:
    return Config(
        netwatch=netwatch_config,
        telegram=TelegramConfig(token="123:abc", chat_id="42"),
        firewall=FirewallConfig(
            whitelist=["198.51.100.10"],
            backup_dir=str(tmp_path / "backups"),
            cron_script=str(tmp_path / "cron.daily" / "update-china-ipset"),
        ),
        path=tmp_path / "geowall.yaml",
    )
