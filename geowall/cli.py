"""
CLI di geowall.

  geowall [--config FILE] [-v] netwatch
  geowall notify <MESSAGGIO> [--html|--raw]
  geowall firewall setup [--test] [--yes]
  geowall firewall update
  geowall firewall rollback [BACKUP]
  geowall firewall install-cron
  geowall install-service [--no-start]
"""
import argparse
import logging
import subprocess
import sys

import requests

from geowall import __version__, firewall, netwatch, service
from geowall.config import ConfigError, load_config
from geowall.geoip import FetchError
from geowall.telegram_utils import redact_token, send_telegram_message

logger = logging.getLogger("geowall")


def _setup_console_logging(verbose=False):
    if logger.handlers:
        return
    sh = logging.StreamHandler()
    sh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(sh)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="geowall", description="Firewall geografico e watchdog di rete")
    p.add_argument("--config", help="file YAML (default: $GEOWALL_CONFIG o /etc/geowall/geowall.yaml)")
    p.add_argument("-v", "--verbose", action="store_true", help="log DEBUG")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("netwatch", help="Avvia il watchdog di connettività (spegne l'host dopo N fallimenti)")

    notify = sub.add_parser("notify", help="Invia un messaggio Telegram di prova")
    notify.add_argument("message")
    mode = notify.add_mutually_exclusive_group()
    mode.add_argument("--html", dest="mode", action="store_const", const="HTML")
    mode.add_argument("--markdown", dest="mode", action="store_const", const="MarkdownV2")
    mode.add_argument("--raw", dest="mode", action="store_const", const="raw")
    notify.set_defaults(mode="raw")

    fw = sub.add_parser("firewall", help="Firewall geografico (richiede root)")
    fw_sub = fw.add_subparsers(dest="fw_cmd", required=True)
    setup = fw_sub.add_parser("setup", help="Crea i set e applica le regole INPUT")
    setup.add_argument("-t", "--test", action="store_true", help="verifica solo le dipendenze")
    setup.add_argument("-y", "--yes", action="store_true", help="salta la conferma interattiva")
    fw_sub.add_parser("update", help="Aggiorna il set del paese (cron giornaliero)")
    rollback = fw_sub.add_parser("rollback", help="Ripristina un backup iptables")
    rollback.add_argument("backup", nargs="?", help="file di backup (default: il più recente)")
    fw_sub.add_parser("install-cron", help="Scrive lo script cron giornaliero di update")

    svc = sub.add_parser("install-service", help="Installa e avvia la unit systemd di netwatch")
    svc.add_argument("--unit-path", default=service.DEFAULT_UNIT_PATH)
    svc.add_argument("--no-start", action="store_true", help="abilita senza avviare")
    return p


def _notify(config, args) -> int:
    tg = config.telegram
    if not tg.configured:
        print("ERR: Telegram non configurato (token/chat_id segnaposto)", file=sys.stderr)
        return 1
    sent = send_telegram_message(tg.token, tg.chat_id, args.message, mode=args.mode, timeout=tg.timeout)
    return 0 if sent else 1


def _firewall(config, args) -> int:
    if args.fw_cmd == "setup":
        return firewall.setup(config, test_mode=args.test, assume_yes=args.yes)
    if args.fw_cmd == "update":
        return firewall.update(config)
    if args.fw_cmd == "rollback":
        firewall.rollback(config, args.backup)
        return 0
    if args.fw_cmd == "install-cron":
        firewall.require_root("firewall install-cron")
        firewall.install_cron(config)
        return 0
    raise ValueError(f"comando firewall sconosciuto: {args.fw_cmd}")


def run_cli(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"ERR: configurazione: {e}", file=sys.stderr)
        return 1

    if args.cmd == "netwatch":
        return netwatch.run_netwatch(config, verbose=args.verbose)

    _setup_console_logging(args.verbose)
    try:
        if args.cmd == "notify":
            return _notify(config, args)
        if args.cmd == "firewall":
            return _firewall(config, args)
        if args.cmd == "install-service":
            firewall.require_root("install-service")
            service.install_service(config.path, unit_path=args.unit_path, start=not args.no_start)
            return 0
    except (firewall.FirewallError, FetchError, PermissionError) as e:
        print(f"ERR: {e}", file=sys.stderr)
        return 1
    except requests.exceptions.RequestException as e:
        print(f"ERR: richiesta HTTP fallita: {redact_token(str(e), config.telegram.token)}", file=sys.stderr)
        return 1
    except subprocess.CalledProcessError as e:
        logger.error(f"Comando fallito ({e.returncode}): {' '.join(e.cmd)}")
        return 1
    raise ValueError(f"comando sconosciuto: {args.cmd}")


def main():
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
