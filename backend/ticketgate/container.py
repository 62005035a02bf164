from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from ticketgate.providers import BOAProvider, CBEProvider, TelebirrProvider, VerificationDispatcher
from ticketgate.providers.cbe import pdftotext_extractor
from ticketgate.services.payments import PaymentVerificationService
from ticketgate.services.reconciliation import ReconciliationEngine
from ticketgate.services.store import PaymentStore
from ticketgate.services.tickets import TicketService
from ticketgate.utils.notify import TelegramNotifier
from ticketgate.utils.tickets import TicketSigner

EXTENSION_KEY = "ticketgate"


@dataclass
class Services:
    store: PaymentStore
    dispatcher: VerificationDispatcher
    tickets: TicketService
    engine: ReconciliationEngine
    payments: PaymentVerificationService


def build_providers(config: Mapping[str, Any]) -> dict:
    return {
        "telebirr": TelebirrProvider(
            config["TELEBIRR_RECEIPT_URL"],
            timeout=config["TELEBIRR_TIMEOUT"],
            max_attempts=config["TELEBIRR_MAX_ATTEMPTS"],
            retry_delay=config["TELEBIRR_RETRY_DELAY"],
        ),
        "cbe": CBEProvider(
            config["CBE_RECEIPT_URL"],
            timeout=config["CBE_TIMEOUT"],
            max_attempts=config["CBE_MAX_ATTEMPTS"],
            retry_delay=config["CBE_RETRY_DELAY"],
            verify_tls=config["CBE_VERIFY_TLS"],
            extract_text=pdftotext_extractor(config["PDFTOTEXT_BIN"]),
        ),
        "boa": BOAProvider(
            config["BOA_RECEIPT_URL"],
            timeout=config["BOA_TIMEOUT"],
            max_attempts=config["BOA_MAX_ATTEMPTS"],
            retry_delay=config["BOA_RETRY_DELAY"],
        ),
    }


def build_services(config: Mapping[str, Any], *, providers=None, notifier=None) -> Services:
    store = PaymentStore()
    dispatcher = VerificationDispatcher(providers if providers is not None else build_providers(config))
    signer = TicketSigner(config["TICKET_SECRET_KEY"], config["QR_BASE_URL"])
    tickets = TicketService(store, signer)
    if notifier is None:
        notifier = TelegramNotifier(config["TELEGRAM_BOT_TOKEN"], config["TELEGRAM_API_BASE"])
    engine = ReconciliationEngine(store, tickets, notifier)
    payments = PaymentVerificationService(dispatcher, engine, timeout=config.get("VERIFY_REQUEST_TIMEOUT"))
    return Services(store=store, dispatcher=dispatcher, tickets=tickets, engine=engine, payments=payments)
