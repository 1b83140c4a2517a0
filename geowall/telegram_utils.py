"""
Notifiche Telegram best-effort.

Modulo:
    from geowall.telegram_utils import TelegramNotifier, send_telegram_message

send_telegram_message() è la chiamata grezza alla Bot API (solleva le
eccezioni di rete); TelegramNotifier.notify() è fire-and-forget: non
ritenta e non solleva mai per problemi di consegna.
"""
import logging

import requests

from geowall.config import TelegramConfig

API_URL = "https://api.telegram.org/bot{token}/sendMessage"

logger = logging.getLogger(__name__)


# === Escape per MarkdownV2 ===
def escape_markdown_v2(text):
    escape_chars = r"\_*[]()~`>#+-=|{}.!<>"
    for char in escape_chars:
        text = text.replace(char, f"\\{char}")
    return text


# === Invio messaggio Telegram ===
def send_telegram_message(token, chat_id, message, mode="raw", timeout=10.0) -> bool:
    url = API_URL.format(token=token)
    if mode == "MarkdownV2":
        message = escape_markdown_v2(message)
    payload = {"chat_id": chat_id, "text": message}
    if mode != "raw":
        payload["parse_mode"] = mode
    response = requests.post(url, data=payload, timeout=timeout)
    if response.status_code == 200:
        logger.debug("Messaggio Telegram inviato con successo.")
        return True
    logger.debug(f"Errore Telegram: {response.status_code} {response.text}")
    return False


def redact_token(text, token):
    """Toglie il token dal testo (le eccezioni di requests riportano l'URL)."""
    return text.replace(token, "***") if token else text


class TelegramNotifier:
    """Wrapper che salta l'invio quando token/chat_id sono segnaposto."""

    def __init__(self, config: TelegramConfig):
        self.config = config
        self.last_error = None

    @property
    def configured(self) -> bool:
        return self.config.configured

    def notify(self, message, mode="raw") -> bool:
        self.last_error = None
        if not self.configured:
            return False
        try:
            sent = send_telegram_message(
                self.config.token, self.config.chat_id, message,
                mode=mode, timeout=self.config.timeout,
            )
        except requests.exceptions.RequestException as e:
            self.last_error = f"{type(e).__name__}: {redact_token(str(e), self.config.token)}"
            return False
        if not sent:
            self.last_error = "risposta HTTP non valida"
        return sent
