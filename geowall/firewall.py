"""
Firewall geografico per server di transito.

- Solo la chain INPUT viene ristretta: IP del paese configurato + whitelist,
  tutto il resto DROP (con LOG a frequenza limitata).
- FORWARD e OUTPUT restano ACCEPT, il port forwarding non viene toccato.
- Prima di applicare le regole salva un backup di iptables-save.

Comandi (vedi geowall.cli):
  geowall firewall setup [--test] [--yes]
  geowall firewall update          # refresh giornaliero del set paese
  geowall firewall rollback [FILE]
  geowall firewall install-cron
"""
import logging
import os
import shutil
import sys
from pathlib import Path

from geowall import geoip, ipset_utils, iptables_utils
from geowall.config import Config

REQUIRED_TOOLS = ("iptables", "ipset")
TOTAL_STEPS = 6

logger = logging.getLogger(__name__)

# ANSI colori (solo su terminale)
if sys.stdout.isatty():
    GREEN = "\033[92m"
    RED = "\033[91m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    RESET = "\033[0m"
else:
    GREEN = RED = YELLOW = BLUE = RESET = ""


class FirewallError(Exception):
    """Precondizione mancante (root, strumenti, conferma dell'operatore)."""


def _step(n, message):
    print(f"{BLUE}[STEP]{RESET} Passo {n}/{TOTAL_STEPS}: {message}")


def _info(message):
    print(f"{GREEN}[INFO]{RESET} {message}")


def _warn(message):
    print(f"{YELLOW}[WARN]{RESET} {message}")


def require_root(command="firewall setup"):
    if os.geteuid() != 0:
        raise FirewallError(f"Serve root: sudo {os.path.basename(sys.argv[0]) or 'geowall'} {command}")


def check_dependencies():
    """Ritorna {tool: installato?} per ogni strumento richiesto."""
    return {tool: shutil.which(tool) is not None for tool in REQUIRED_TOOLS}


def _require_tools():
    try:
        iptables_utils.check_available()
        ipset_utils.check_available()
    except RuntimeError as e:
        raise FirewallError(str(e)) from e


def _confirm(whitelist_set, public_ip, input_func):
    print("")
    print("🚨 Verifica che l'IP di amministrazione sia in whitelist:")
    print(f"  ipset create {whitelist_set} hash:ip -exist")
    print(f"  ipset add {whitelist_set} {public_ip or '<tuo-ip>'}")
    print("")
    try:
        answer = input_func("Confermi? Digita yes per procedere: ").strip()
    except EOFError:
        # stdin non interattivo senza --yes
        raise FirewallError("Operazione annullata (nessun terminale, usa --yes)")
    if answer != "yes":
        raise FirewallError("Operazione annullata")


def load_country_set(config: Config) -> int:
    fw = config.firewall
    networks = geoip.fetch_zone(fw.ip_list_url)
    return ipset_utils.replace_set(fw.country_set, networks, ipset_utils.HASH_NET)


def report_status(config: Config):
    fw = config.firewall
    print("")
    print(f"{GREEN}✅ Regole firewall applicate{RESET}")
    print("━" * 46)
    policy = iptables_utils.chain_policy("FORWARD")
    if policy == "ACCEPT":
        print(f"🧱 Policy di default FORWARD: 🍏 {GREEN}ACCEPT{RESET}")
    else:
        print(f"🧱 Policy di default FORWARD: 🔴 {RED}{policy}{RESET}  (⚠ può bloccare il forwarding)")
    members = ipset_utils.list_set(fw.whitelist_set)
    print(f"📋 Whitelist {fw.whitelist_set}: {', '.join(members) if members else '(vuota)'}")
    print("━" * 46)
    print("🔍 Prime 20 regole della chain INPUT:")
    for line in iptables_utils.list_input_rules(limit=20):
        print(line)
    print("━" * 46)
    print("")
    print("📌 Se resti chiuso fuori da SSH, dalla console del provider:")
    print(f"    {YELLOW}iptables -F INPUT && iptables -P INPUT ACCEPT{RESET}")
    print("oppure ripristina l'ultimo backup:")
    print(f"    {YELLOW}geowall firewall rollback{RESET}  (backup in {fw.backup_dir})")
    print("")
    return policy


def setup(config: Config, test_mode=False, assume_yes=False, input_func=input) -> int:
    fw = config.firewall
    require_root()

    if test_mode:
        _info("Modalità test: verifico le dipendenze...")
        for tool, installed in check_dependencies().items():
            print(f"  {'✓' if installed else '✗'} {tool}: {'installato' if installed else 'non installato'}")
        return 0

    _step(1, "verifica strumenti")
    _require_tools()

    _step(2, "rilevamento IP pubblico")
    public_ip = geoip.detect_public_ip()
    _info(f"IP pubblico attuale: {GREEN}{public_ip or 'sconosciuto'}{RESET}")

    _step(3, "conferma di sicurezza")
    if assume_yes:
        _warn("--yes: conferma saltata")
    else:
        _confirm(fw.whitelist_set, public_ip, input_func)

    _step(4, "creazione dei set IP")
    ipset_utils.ensure_set(fw.whitelist_set, ipset_utils.HASH_IP)
    whitelist = list(fw.whitelist)
    if public_ip and public_ip not in whitelist:
        whitelist.append(public_ip)
    ipset_utils.add_entries(fw.whitelist_set, whitelist)
    _info(f"Whitelist {fw.whitelist_set}: {len(whitelist)} indirizzi")
    count = load_country_set(config)
    _info(f"Importati {GREEN}{count}{RESET} CIDR in {fw.country_set}")
    logger.info(f"Set {fw.country_set} caricato con {count} CIDR")

    _step(5, "backup delle regole esistenti")
    backup = iptables_utils.backup_rules(fw.backup_dir)
    _info(f"Salvato in {backup}")
    logger.info(f"Backup iptables: {backup}")

    _step(6, "applicazione regole (solo INPUT)")
    iptables_utils.apply_input_rules(
        fw.whitelist_set,
        fw.country_set,
        log_prefix=fw.log_prefix if fw.enable_logging else None,
        log_limit=fw.log_limit,
    )
    logger.info("Regole INPUT applicate")

    report_status(config)
    print(f"{GREEN}✅ Firewall attivo: ammessi solo gli IP di {fw.country_set} + whitelist{RESET}")
    return 0


def update(config: Config) -> int:
    """Refresh del set paese, pensato per il cron giornaliero."""
    require_root("firewall update")
    _require_tools()
    count = load_country_set(config)
    logger.info(f"Set {config.firewall.country_set} aggiornato: {count} CIDR")
    _info(f"Set {config.firewall.country_set} aggiornato: {count} CIDR")
    return 0


def render_cron_script(config_path=None) -> str:
    command = f"{sys.executable} -m geowall"
    if config_path:
        command += f" --config {config_path}"
    return (
        "#!/bin/sh\n"
        "# Aggiornamento giornaliero del set IP del paese (generato da geowall)\n"
        f"exec {command} firewall update >> /var/log/geowall-update.log 2>&1\n"
    )


def install_cron(config: Config) -> Path:
    target = Path(config.firewall.cron_script)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(render_cron_script(config.path), encoding="utf-8")
    target.chmod(0o755)
    _info(f"Cron giornaliero scritto in {target}")
    return target


def rollback(config: Config, path=None) -> Path:
    require_root("firewall rollback")
    backup = Path(path) if path else iptables_utils.latest_backup(config.firewall.backup_dir)
    if backup is None or not backup.exists():
        raise FirewallError(f"Nessun backup trovato in {config.firewall.backup_dir}")
    iptables_utils.restore_rules(backup)
    logger.info(f"Regole ripristinate da {backup}")
    _info(f"Regole ripristinate da {backup}")
    return backup
