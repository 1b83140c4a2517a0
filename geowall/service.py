"""
Installazione del servizio systemd per NetWatch.

systemd si occupa di avvio al boot e riavvio in caso di crash
(Restart=always); qui scriviamo solo la unit e la abilitiamo.
"""
import subprocess
import sys
from pathlib import Path

DEFAULT_UNIT_PATH = "/etc/systemd/system/netwatch.service"

UNIT_TEMPLATE = """[Unit]
Description={description}
After=network-online.target
Wants=network-online.target

[Service]
Type=simple
ExecStart={exec_start}
Restart=always
RestartSec=2s

[Install]
WantedBy=multi-user.target
"""


def build_exec_start(config_path=None) -> str:
    cmd = f"{sys.executable} -m geowall"
    if config_path:
        cmd += f" --config {config_path}"
    return cmd + " netwatch"


def render_unit(exec_start: str, description="Network Connectivity Watchdog (TCP DNS Monitor)") -> str:
    return UNIT_TEMPLATE.format(description=description, exec_start=exec_start)


def install_service(config_path=None, unit_path=DEFAULT_UNIT_PATH, start=True) -> Path:
    unit_file = Path(unit_path)
    unit_file.parent.mkdir(parents=True, exist_ok=True)
    unit_file.write_text(render_unit(build_exec_start(config_path)), encoding="utf-8")
    print(f"📝 Scritto {unit_file}")

    subprocess.run(["systemctl", "daemon-reload"], check=True)
    subprocess.run(["systemctl", "enable", unit_file.name], check=True)
    if start:
        subprocess.run(["systemctl", "start", unit_file.name], check=True)
        print(f"✅ {unit_file.name} avviato")
    print("📌 Log: journalctl -u netwatch oppure tail -f del log_file configurato")
    return unit_file
