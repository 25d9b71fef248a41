from supabase import Client, create_client

from .config import Config

# Logical tables
MAILBOX_CREDENTIALS = "mailbox_credentials"
SYNC_LOG = "sync_log"
TRANSACTIONS = "transactions"
PENDING_PAYMENTS = "pending_payments"
SUBSCRIPTIONS = "subscriptions"
PLANS = "plans"


def create_store(config: Config) -> Client:
    """
    Construct the Supabase client once at startup

    The client is passed to each component explicitly; nothing in the
    service reaches for a module-level client.
    """
    return create_client(config.supabase_url, config.supabase_key)
