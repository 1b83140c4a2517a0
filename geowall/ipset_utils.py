"""
ipset_utils.py

Utility per gestire i set ipset in modo idempotente.

Funzioni principali:
- check_available(): verifica che il comando `ipset` sia presente
- ensure_set(): crea il set se mancante (`-exist`)
- add_entries(): caricamento massivo via `ipset restore` da file temporaneo
- replace_set(): riempie un set temporaneo e lo scambia con quello attivo
- list_set(): elenco dei membri

Note:
- Per i caricamenti massivi scriviamo un file temporaneo e usiamo
  `ipset -exist -file ... restore`: migliaia di `ipset add` sono troppo lenti.
- replace_set() non lascia mai il set attivo vuoto durante l'aggiornamento.
"""

import subprocess
import tempfile
from pathlib import Path
from typing import Iterable, List

HASH_NET = "hash:net"
HASH_IP = "hash:ip"


class IpsetError(RuntimeError):
    pass


def check_available() -> None:
    """
    Verifica che il comando `ipset` sia disponibile.
    Solleva IpsetError in caso di problemi.
    """
    try:
        subprocess.run(["ipset", "--version"], check=True, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    except FileNotFoundError:
        raise IpsetError("Comando 'ipset' non trovato. Installa il pacchetto ipset.")
    except subprocess.CalledProcessError:
        raise IpsetError("Errore nell'esecuzione di 'ipset'.")


def ensure_set(name: str, set_type: str = HASH_NET) -> None:
    subprocess.run(["ipset", "create", name, set_type, "family", "inet", "-exist"], check=True)


def _restore_from_file(content: str) -> None:
    """
    Scrive content su file temporaneo e lo applica con `ipset restore`.
    Rimuove il file temporaneo alla fine.
    """
    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile("w", delete=False, prefix="ipset_tmp_", suffix=".restore") as fh:
            tmp_path = Path(fh.name)
            fh.write(content)
        subprocess.run(["ipset", "-exist", "-file", str(tmp_path), "restore"], check=True)
    finally:
        if tmp_path and tmp_path.exists():
            tmp_path.unlink()


def add_entries(name: str, entries: Iterable[str]) -> int:
    """Aggiunge entries al set esistente. Ritorna il numero di righe caricate."""
    lines = [f"add {name} {entry}" for entry in entries]
    if not lines:
        return 0
    _restore_from_file("\n".join(lines) + "\n")
    return len(lines)


def replace_set(name: str, entries: Iterable[str], set_type: str = HASH_NET) -> int:
    """
    Sostituzione atomica: crea `<name>_tmp`, lo riempie, `ipset swap` con il
    set attivo e distrugge il temporaneo.
    """
    tmp_name = f"{name}_tmp"
    ensure_set(name, set_type)
    subprocess.run(["ipset", "destroy", tmp_name], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    ensure_set(tmp_name, set_type)
    try:
        count = add_entries(tmp_name, entries)
        subprocess.run(["ipset", "swap", tmp_name, name], check=True)
    finally:
        subprocess.run(["ipset", "destroy", tmp_name], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    return count


def list_set(name: str) -> List[str]:
    out = subprocess.run(["ipset", "list", name], check=True, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL, text=True)
    members = []
    in_members = False
    for line in (out.stdout or "").splitlines():
        if line.startswith("Members:"):
            in_members = True
            continue
        if in_members and line.strip():
            members.append(line.strip())
    return members
