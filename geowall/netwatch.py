"""
NetWatch: watchdog di connettività con spegnimento automatico.

Ogni ciclo prova una connessione TCP verso ciascun target. Il ciclo fallisce
solo se falliscono tutti; basta un successo per azzerare il contatore.
Raggiunta la soglia di fallimenti consecutivi: log critico, notifica
Telegram (se configurata), attesa di grazia e poweroff. Non si torna
indietro dallo stato SHUTTING_DOWN.

Pensato per girare come servizio systemd (vedi geowall.service).
"""
import enum
import logging
import socket
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from geowall.config import NetwatchConfig, ProbeTarget
from geowall.telegram_utils import TelegramNotifier

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

OK_MARK = "✔"
FAIL_MARK = "✖"


class Phase(enum.Enum):
    POLLING = "polling"
    SHUTTING_DOWN = "shutting_down"


@dataclass
class WatchdogState:
    threshold: int
    consecutive_failures: int = 0
    phase: Phase = Phase.POLLING

    def __post_init__(self):
        if self.threshold <= 0:
            raise ValueError(f"threshold deve essere > 0 (trovato {self.threshold})")

    @property
    def tripped(self) -> bool:
        return self.phase is Phase.SHUTTING_DOWN

    def record(self, ok: bool) -> bool:
        """
        Registra l'esito di un ciclo.
        Ritorna True se il ciclo chiude una serie di fallimenti (recupero).
        """
        if self.tripped:
            raise RuntimeError("watchdog già in spegnimento, nessun altro ciclo ammesso")

        if ok:
            recovered = self.consecutive_failures > 0
            self.consecutive_failures = 0
            return recovered

        self.consecutive_failures += 1
        if self.consecutive_failures >= self.threshold:
            self.phase = Phase.SHUTTING_DOWN
        return False


def tcp_probe(target: ProbeTarget, timeout: float) -> bool:
    # timeout, connection refused, DNS: tutto vale "irraggiungibile"
    try:
        sock = socket.create_connection((target.address, target.port), timeout=timeout)
        sock.close()
        return True
    except OSError:
        return False


def format_status(targets: Sequence[ProbeTarget], results: Sequence[bool]) -> str:
    return " | ".join(
        f"{t} {OK_MARK if r else FAIL_MARK}" for t, r in zip(targets, results)
    )


def power_off(command: Sequence[str]) -> int:
    result = subprocess.run(list(command), check=False)
    return result.returncode


def setup_logging(log_file, level=logging.INFO, echo=True) -> logging.Logger:
    """
    Log append-only su file, una riga per evento: "[YYYY-mm-dd HH:MM:SS] msg".
    Con echo=True scrive anche su stdout (come il vecchio `tee -a`).
    Richiamabile più volte: sostituisce gli handler precedenti.
    """
    root = logging.getLogger("geowall")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(path, mode="a", encoding="utf-8")
    fh.setFormatter(formatter)
    root.addHandler(fh)

    if echo:
        sh = logging.StreamHandler()
        sh.setFormatter(formatter)
        root.addHandler(sh)
    return root


class NetWatch:
    """Loop di polling che possiede il WatchdogState."""

    def __init__(
        self,
        config: NetwatchConfig,
        notifier: Optional[TelegramNotifier] = None,
        probe: Callable[[ProbeTarget, float], bool] = tcp_probe,
        shutdown: Callable[[Sequence[str]], int] = power_off,
        sleep: Callable[[float], None] = time.sleep,
        hostname: Optional[str] = None,
    ):
        self.config = config
        self.targets: List[ProbeTarget] = list(config.targets)
        self.state = WatchdogState(threshold=config.threshold)
        self.notifier = notifier
        self.probe = probe
        self.shutdown = shutdown
        self.sleep = sleep
        self.hostname = hostname or socket.gethostname()
        self.cycles = 0

    def probe_all(self) -> List[bool]:
        return [self.probe(t, self.config.probe_timeout) for t in self.targets]

    def poll_once(self) -> bool:
        """Esegue un ciclo. Ritorna True se la soglia è stata raggiunta."""
        results = self.probe_all()
        self.cycles += 1
        status = format_status(self.targets, results)

        ok = any(results)
        recovered = self.state.record(ok)
        if ok:
            if recovered:
                logger.info("[RECOVER] connettività ripristinata, contatore azzerato")
            logger.info(f"[OK]   {status}")
        else:
            logger.warning(
                f"[FAIL] {status} ({self.state.consecutive_failures}/{self.state.threshold})"
            )
        return self.state.tripped

    def build_alert(self) -> str:
        return (
            f"🛑 DNS irraggiungibili\n"
            f"Il server {self.hostname} non raggiunge la rete esterna da "
            f"{self.state.threshold} controlli consecutivi.\n"
            f"Spegnimento tra {self.config.grace_period:g} secondi 🤖💣"
        )

    def notify(self) -> None:
        if self.notifier is None or not self.notifier.configured:
            logger.info("[INFO] Telegram non configurato, notifica saltata")
            return
        if self.notifier.notify(self.build_alert()):
            logger.info("[INFO] Telegram notifica inviata")
        else:
            logger.info(f"[INFO] Telegram notifica fallita: {self.notifier.last_error}")

    def trigger_shutdown(self) -> int:
        """Sequenza terminale: log critico, notifica, grazia, poweroff."""
        logger.critical(
            f"[CRITICAL] {self.state.threshold} fallimenti consecutivi, spegnimento in corso!"
        )
        self.notify()
        self.sleep(self.config.grace_period)
        returncode = self.shutdown(self.config.shutdown_command)
        if returncode != 0:
            logger.error(
                f"[CRITICAL] comando di spegnimento {' '.join(self.config.shutdown_command)} "
                f"uscito con codice {returncode}"
            )
        return returncode

    def run(self, max_cycles: Optional[int] = None) -> int:
        """
        Loop principale. Termina solo dopo lo spegnimento (o dopo
        max_cycles cicli, usato nei test). Ritorna il codice del comando
        di spegnimento, 0 se il loop esce senza spegnere.
        """
        logger.info(
            f"=== NetWatch avviato, target: {' & '.join(str(t) for t in self.targets)} "
            f"(soglia {self.state.threshold}, intervallo {self.config.interval:g}s) ==="
        )
        while max_cycles is None or self.cycles < max_cycles:
            if self.poll_once():
                return self.trigger_shutdown()
            self.sleep(self.config.interval)
        return 0


def run_netwatch(config, verbose=False) -> int:
    setup_logging(config.netwatch.log_file, level=logging.DEBUG if verbose else logging.INFO)
    watch = NetWatch(config.netwatch, notifier=TelegramNotifier(config.telegram))
    return watch.run()
