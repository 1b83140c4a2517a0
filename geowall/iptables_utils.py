"""
iptables_utils.py

Regole INPUT per il filtro geografico.

Funzioni principali:
- check_available(): verifica che `iptables` sia presente
- backup_rules(): salva `iptables-save` in backup_dir con timestamp
- latest_backup() / restore_rules(): rollback
- build_input_rules(): costruisce (senza eseguirle) le regole della chain INPUT
- apply_input_rules(): flush di INPUT e applicazione delle regole
- chain_policy() / list_input_rules(): autocontrollo a fine setup

Solo INPUT viene filtrata: FORWARD e OUTPUT restano ACCEPT, altrimenti
il port forwarding della macchina di transito smette di funzionare.
"""

import subprocess
from datetime import datetime
from pathlib import Path
from typing import List, Optional

BACKUP_PATTERN = "iptables-*.rules"


class IptablesError(RuntimeError):
    pass


def check_available() -> None:
    """
    Verifica che il comando `iptables` sia disponibile.
    Solleva IptablesError in caso di problemi.
    """
    try:
        subprocess.run(["iptables", "--version"], check=True, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    except FileNotFoundError:
        raise IptablesError("Comando 'iptables' non trovato. Installa il pacchetto iptables.")
    except subprocess.CalledProcessError:
        raise IptablesError("Errore nell'esecuzione di 'iptables'.")


def backup_rules(backup_dir) -> Path:
    base = Path(backup_dir)
    base.mkdir(parents=True, exist_ok=True)
    target = base / f"iptables-{datetime.now():%Y%m%d-%H%M%S}.rules"
    out = subprocess.run(["iptables-save"], check=True, stdout=subprocess.PIPE, text=True)
    target.write_text(out.stdout, encoding="utf-8")
    return target


def latest_backup(backup_dir) -> Optional[Path]:
    base = Path(backup_dir)
    if not base.is_dir():
        return None
    # il timestamp nel nome ordina lessicograficamente
    backups = sorted(base.glob(BACKUP_PATTERN))
    return backups[-1] if backups else None


def restore_rules(path) -> None:
    with open(path, "r", encoding="utf-8") as fh:
        subprocess.run(["iptables-restore"], stdin=fh, check=True)


def build_input_rules(whitelist_set: str, country_set: str, log_prefix: Optional[str] = "[FW-BLOCK]",
                      log_limit: str = "10/min") -> List[List[str]]:
    """
    Ritorna la lista ordinata dei comandi iptables (argv) da eseguire.
    log_prefix=None disattiva la regola LOG.
    """
    rules = [
        ["iptables", "-F", "INPUT"],
        ["iptables", "-P", "FORWARD", "ACCEPT"],
        ["iptables", "-P", "OUTPUT", "ACCEPT"],
        ["iptables", "-A", "INPUT", "-i", "lo", "-j", "ACCEPT"],
        ["iptables", "-A", "INPUT", "-m", "conntrack", "--ctstate", "ESTABLISHED,RELATED", "-j", "ACCEPT"],
        ["iptables", "-A", "INPUT", "-m", "set", "--match-set", whitelist_set, "src", "-j", "ACCEPT"],
        ["iptables", "-A", "INPUT", "-m", "set", "--match-set", country_set, "src", "-j", "ACCEPT"],
    ]
    if log_prefix:
        rules.append([
            "iptables", "-A", "INPUT", "-m", "limit", "--limit", log_limit,
            "-j", "LOG", "--log-prefix", f"{log_prefix} ", "--log-level", "4",
        ])
    rules.append(["iptables", "-A", "INPUT", "-j", "DROP"])
    return rules


def apply_input_rules(whitelist_set: str, country_set: str, log_prefix: Optional[str] = "[FW-BLOCK]",
                      log_limit: str = "10/min") -> None:
    for cmd in build_input_rules(whitelist_set, country_set, log_prefix, log_limit):
        subprocess.run(cmd, check=True)


def chain_policy(chain: str) -> str:
    """Policy di default della chain, es. 'ACCEPT'."""
    out = subprocess.run(["iptables", "-S", chain], check=True, stdout=subprocess.PIPE, text=True)
    for line in (out.stdout or "").splitlines():
        parts = line.split()
        # "-P FORWARD ACCEPT"
        if len(parts) == 3 and parts[0] == "-P" and parts[1] == chain:
            return parts[2]
    return "UNKNOWN"


def list_input_rules(limit: int = 20) -> List[str]:
    out = subprocess.run(["iptables", "-L", "INPUT", "-n", "--line-numbers"], check=True, stdout=subprocess.PIPE, text=True)
    return (out.stdout or "").splitlines()[:limit]
