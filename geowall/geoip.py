"""
Download della lista CIDR di un paese (formato ipdeny .zone) e
rilevamento dell'IP pubblico della macchina.
"""
import ipaddress
import logging
from typing import List, Optional, Sequence

import requests

REQUEST_TIMEOUT = 30
PUBLIC_IP_TIMEOUT = 5

PUBLIC_IP_URLS = (
    "https://ipinfo.io/ip",
    "https://api.ipify.org",
    "https://ifconfig.me",
)

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """Raised when the zone file cannot be downloaded."""


def parse_zone(text: str) -> List[str]:
    """Ritorna i CIDR IPv4 validi, in ordine, senza duplicati."""
    networks = []
    seen = set()
    for line in text.splitlines():
        line = line.split("#", 1)[0].strip()
        if not line:
            continue
        try:
            net = ipaddress.ip_network(line, strict=False)
        except ValueError:
            logger.debug(f"Riga zone ignorata: {line!r}")
            continue
        if net.version != 4:
            continue
        cidr = str(net)
        if cidr not in seen:
            seen.add(cidr)
            networks.append(cidr)
    return networks


def fetch_zone(url: str, timeout: float = REQUEST_TIMEOUT) -> List[str]:
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        raise FetchError(f"download di {url} fallito: {e}") from e

    networks = parse_zone(response.text)
    if not networks:
        raise FetchError(f"nessun CIDR valido in {url}")
    logger.info(f"Scaricati {len(networks)} CIDR da {url}")
    return networks


def detect_public_ip(urls: Sequence[str] = PUBLIC_IP_URLS, timeout: float = PUBLIC_IP_TIMEOUT) -> Optional[str]:
    for url in urls:
        try:
            response = requests.get(url, timeout=timeout)
            candidate = response.text.strip()
            if ipaddress.ip_address(candidate).version == 4:
                return candidate
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.debug(f"Rilevamento IP pubblico via {url} fallito: {e}")
            continue
    return None
