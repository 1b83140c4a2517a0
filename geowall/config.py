"""
Parsing della configurazione e valori di default.

Espone load_config(path) che ritorna un oggetto Config con tre sezioni:
netwatch, telegram, firewall. Tutte le chiavi sono opzionali.
"""
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml

DEFAULT_CONFIG_PATH = "/etc/geowall/geowall.yaml"
CONFIG_ENV_VAR = "GEOWALL_CONFIG"

PLACEHOLDER = "__REPLACE_ME__"


class ConfigError(Exception):
    """Raised when the configuration file cannot be used."""


@dataclass(frozen=True)
class ProbeTarget:
    address: str
    port: int

    def __str__(self):
        return f"{self.address}:{self.port}"


DEFAULT_TARGETS = [ProbeTarget("8.8.8.8", 53), ProbeTarget("1.1.1.1", 53)]


@dataclass
class NetwatchConfig:
    targets: List[ProbeTarget] = field(default_factory=lambda: list(DEFAULT_TARGETS))
    threshold: int = 10
    interval: float = 1.0
    probe_timeout: float = 1.0
    grace_period: float = 5.0
    log_file: str = "/var/log/netwatch.log"
    shutdown_command: List[str] = field(default_factory=lambda: ["poweroff"])


@dataclass
class TelegramConfig:
    token: str = PLACEHOLDER
    chat_id: str = PLACEHOLDER
    timeout: float = 10.0

    @property
    def configured(self) -> bool:
        return all(v and v != PLACEHOLDER for v in (self.token, self.chat_id))


@dataclass
class FirewallConfig:
    country_set: str = "china_ipset"
    whitelist_set: str = "cn_whitelist"
    ip_list_url: str = "https://www.ipdeny.com/ipblocks/data/countries/cn.zone"
    whitelist: List[str] = field(default_factory=list)
    backup_dir: str = "/root/firewall-backups"
    log_prefix: str = "[FW-BLOCK]"
    enable_logging: bool = True
    log_limit: str = "10/min"
    cron_script: str = "/etc/cron.daily/update-china-ipset"


@dataclass
class Config:
    netwatch: NetwatchConfig = field(default_factory=NetwatchConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    firewall: FirewallConfig = field(default_factory=FirewallConfig)
    path: Optional[Path] = None


def resolve_config_path(path=None) -> Path:
    """--config, poi $GEOWALL_CONFIG, poi il percorso di sistema."""
    raw = path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    return Path(raw).expanduser()


def parse_target(item) -> ProbeTarget:
    """Accetta {"address": ..., "port": ...} oppure "host:port"."""
    if isinstance(item, str):
        address, sep, port = item.rpartition(":")
        if not sep or not address:
            raise ValueError(f"target senza porta: {item!r}")
        return ProbeTarget(address.strip("[]"), _port(port))
    if isinstance(item, dict):
        address = item.get("address") or item.get("host")
        if not address:
            raise ValueError(f"target senza indirizzo: {item!r}")
        return ProbeTarget(str(address), _port(item.get("port")))
    raise ValueError(f"target non valido: {item!r}")


def _port(value) -> int:
    if isinstance(value, (bool, float)):
        raise ValueError(f"porta non valida: {value!r}")
    port = int(value)
    if not 0 < port < 65536:
        raise ValueError(f"porta fuori range: {port}")
    return port


def _int(value, key) -> int:
    # YAML: true/false sono bool, che in Python è sottoclasse di int
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} deve essere un intero (trovato {value!r})")
    return value


def _number(value, key) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{key} deve essere un numero (trovato {value!r})")
    return float(value)


def _bool(value, key) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{key} deve essere true o false (trovato {value!r})")
    return value


def _section(raw: dict, name: str) -> dict:
    section = raw.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"la sezione '{name}' deve essere una mappa")
    return section


def _parse_netwatch(section: dict) -> NetwatchConfig:
    cfg = NetwatchConfig()

    if "targets" in section:
        targets = []
        for item in section.get("targets") or []:
            try:
                targets.append(parse_target(item))
            except (TypeError, ValueError) as e:
                print(f"WARN: salto target malformato: {item} ({e})", file=sys.stderr)
                continue
        if not targets:
            raise ConfigError("netwatch.targets: nessun target valido")
        cfg.targets = targets

    cfg.threshold = _int(section.get("threshold", cfg.threshold), "netwatch.threshold")
    for name in ("interval", "probe_timeout", "grace_period"):
        setattr(cfg, name, _number(section.get(name, getattr(cfg, name)), f"netwatch.{name}"))

    if cfg.threshold <= 0:
        raise ConfigError(f"netwatch.threshold deve essere > 0 (trovato {cfg.threshold})")
    for name in ("interval", "probe_timeout", "grace_period"):
        if getattr(cfg, name) < 0:
            raise ConfigError(f"netwatch.{name} non può essere negativo")
    if cfg.probe_timeout == 0:
        raise ConfigError("netwatch.probe_timeout deve essere > 0")

    cfg.log_file = str(section.get("log_file", cfg.log_file))

    command = section.get("shutdown_command", cfg.shutdown_command)
    if isinstance(command, str):
        command = command.split()
    if not command:
        raise ConfigError("netwatch.shutdown_command è vuoto")
    cfg.shutdown_command = [str(c) for c in command]
    return cfg


def _parse_telegram(section: dict) -> TelegramConfig:
    cfg = TelegramConfig()
    cfg.token = str(section.get("token") or PLACEHOLDER)
    cfg.chat_id = str(section.get("chat_id") or PLACEHOLDER)
    cfg.timeout = _number(section.get("timeout", cfg.timeout), "telegram.timeout")
    return cfg


def _parse_firewall(section: dict) -> FirewallConfig:
    cfg = FirewallConfig()
    for key in ("country_set", "whitelist_set", "ip_list_url", "backup_dir",
                "log_prefix", "log_limit", "cron_script"):
        if key in section:
            setattr(cfg, key, str(section[key]))
    cfg.enable_logging = _bool(section.get("enable_logging", cfg.enable_logging), "firewall.enable_logging")
    whitelist = section.get("whitelist") or []
    if not isinstance(whitelist, list):
        raise ConfigError("firewall.whitelist deve essere una lista")
    cfg.whitelist = [str(ip) for ip in whitelist]
    return cfg


def load_config(path=None) -> Config:
    """
    Legge il file YAML e ritorna un Config.
    Se il file non esiste usa i default e stampa un avviso;
    YAML invalido o valori fuori range sollevano ConfigError.
    """
    config_file = resolve_config_path(path)
    if not config_file.exists():
        print(f"WARN: file di configurazione non trovato: {config_file}, uso i default", file=sys.stderr)
        return Config(path=config_file)

    try:
        raw = yaml.safe_load(config_file.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"parsing {config_file}: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"formato invalido in {config_file}")

    return Config(
        netwatch=_parse_netwatch(_section(raw, "netwatch")),
        telegram=_parse_telegram(_section(raw, "telegram")),
        firewall=_parse_firewall(_section(raw, "firewall")),
        path=config_file,
    )
