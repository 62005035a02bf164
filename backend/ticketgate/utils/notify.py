from __future__ import annotations

import html
from typing import Any

from ticketgate.utils.telegram_client import CAPTION_LIMIT, TELEGRAM_BASE, send_telegram_photo


def _clip(value: Any, limit: int) -> str:
    """Shorten raw text before it is escaped, so no entity or tag is cut."""
    text = str(value or "")
    return text if len(text) <= limit else text[: limit - 1].rstrip() + "…"


def ticket_caption(invoice: Any, ticket_url: str) -> str:
    meta = invoice.metadata_dict()
    lines = [
        "✅ <b>Payment verified</b>",
        "",
        f"Event: {html.escape(_clip(meta.get('eventName') or 'Event', 150))}",
    ]
    if meta.get("place"):
        lines.append(f"Place: {html.escape(_clip(meta['place'], 150))}")
    if invoice.event_time:
        lines.append(f"Time: {invoice.event_time.strftime('%d %b %Y %H:%M')}")
    lines += [
        f"Amount: {invoice.amount} {invoice.currency or 'ETB'}",
        f"Transaction: {html.escape(invoice.transaction_id or '')}",
        "",
        "Show this QR code at the entrance.",
    ]
    caption = "\n".join(lines)
    # The link goes last and only whole
    link = "\n" + html.escape(ticket_url)
    if len(caption) + len(link) <= CAPTION_LIMIT:
        caption += link
    return caption


class TelegramNotifier:
    """Delivers issued tickets to the buyer's Telegram chat."""

    def __init__(self, token: str, api_base: str = TELEGRAM_BASE):
        self.token = token
        self.api_base = api_base

    def notify_ticket_issued(self, user: Any, invoice: Any, image: bytes, ticket_url: str) -> tuple[bool, str]:
        chat_id = getattr(user, "telegram_chat_id", None) if user is not None else None
        return send_telegram_photo(
            token=self.token,
            chat_id=str(chat_id or ""),
            photo=image,
            caption=ticket_caption(invoice, ticket_url),
            api_base=self.api_base,
        )
