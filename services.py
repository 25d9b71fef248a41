from dataclasses import dataclass
from typing import Optional

import requests
from supabase import Client

from common.config import Config
from common.store import create_store
from inbox import CredentialStore, GmailClient
from payment import CheckoutService, MidtransSnapClient, WebhookReconciler
from transaction import EmailParser, SyncLog, SyncOrchestrator, TransactionProcessor


@dataclass
class Services:
    config: Config
    credentials: CredentialStore
    gmail: GmailClient
    sync_log: SyncLog
    orchestrator: SyncOrchestrator
    gateway: MidtransSnapClient
    checkout: CheckoutService
    reconciler: WebhookReconciler


def build_services(
    config: Config,
    supabase: Optional[Client] = None,
    session: Optional[requests.Session] = None,
) -> Services:
    """
    Construct every component once around one store client

    Without an injected session the Gmail and Midtrans clients each open their
    own requests.Session. Request threads share those sessions, relying on
    urllib3's thread-safe connection pool; no component changes session
    headers, auth or adapters after construction.
    """
    supabase = supabase if supabase is not None else create_store(config)

    credentials = CredentialStore(supabase)
    gmail = GmailClient(config, session)
    sync_log = SyncLog(supabase)
    orchestrator = SyncOrchestrator(
        credentials=credentials,
        gmail=gmail,
        parser=EmailParser(),
        processor=TransactionProcessor(supabase),
        sync_log=sync_log,
        query=config.gmail_query,
        max_results=config.gmail_max_results,
    )
    gateway = MidtransSnapClient(config, session)

    return Services(
        config=config,
        credentials=credentials,
        gmail=gmail,
        sync_log=sync_log,
        orchestrator=orchestrator,
        gateway=gateway,
        checkout=CheckoutService(supabase, gateway),
        reconciler=WebhookReconciler(supabase),
    )
