from __future__ import annotations

import requests

TELEGRAM_BASE = "https://api.telegram.org"
# Bot API limit on photo captions, counted after entity parsing
CAPTION_LIMIT = 1024


def send_telegram_photo(
    *,
    token: str,
    chat_id: str,
    photo: bytes,
    caption: str = "",
    api_base: str = TELEGRAM_BASE,
    timeout: float = 20,
) -> tuple[bool, str]:
    """Send a PNG with a caption through the Telegram Bot API."""
    if not token:
        return False, "TELEGRAM_BOT_TOKEN not set"
    if not chat_id:
        return False, "no telegram chat linked"

    url = f"{api_base.rstrip('/')}/bot{token}/sendPhoto"
    if len(caption) > CAPTION_LIMIT:
        # HTML captions cannot be cut safely here; callers clip the raw text
        return False, f"caption longer than {CAPTION_LIMIT} characters"

    data = {"chat_id": str(chat_id), "caption": caption, "parse_mode": "HTML"}
    files = {"photo": ("ticket.png", photo, "image/png")}
    try:
        r = requests.post(url, data=data, files=files, timeout=timeout)
        j = r.json() if r.content else {}
        if 200 <= r.status_code < 300 and j.get("ok") is True:
            return True, "sent"
        return False, j.get("description") or f"telegram_http_{r.status_code}"
    except (requests.RequestException, ValueError) as e:
        return False, f"telegram_exception:{e}"
