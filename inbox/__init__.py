"""
Mailbox access for transaction ingestion
Credential storage and the Gmail REST client
"""

from .credentials import CredentialStore, MailboxCredential
from .gmail_client import GmailClient, MessageRef

__all__ = ['CredentialStore', 'MailboxCredential', 'GmailClient', 'MessageRef']
