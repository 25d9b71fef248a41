import logging
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Tuple

import requests

from common.config import Config
from common.errors import AuthError, ProviderError, Result, WalletError
from .credentials import MailboxCredential

logger = logging.getLogger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"
GMAIL_API = "https://gmail.googleapis.com/gmail/v1/users/me"

# Gmail caps a single listing page at 500 references
MAX_PAGE_SIZE = 500


@dataclass
class MessageRef:
    id: str
    thread_id: Optional[str] = None


class GmailClient:
    """
    Thin Gmail REST client

    Holds no state between calls besides the injected HTTP session. Every
    request carries an explicit (connect, read) timeout so a stalled
    provider aborts the current pass instead of hanging it.
    """

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.client_id = config.google_client_id
        self.client_secret = config.google_client_secret
        self.redirect_uri = config.google_redirect_uri
        self.timeout = config.timeout
        self.session = session or requests.Session()

    def refresh_access_token(self, credential: MailboxCredential) -> Result[str]:
        """
        Exchange the stored refresh token for a short-lived access token

        Exactly one attempt; the caller treats failure as fatal for the pass.
        """
        result = self._token_request({
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": credential.refresh_token,
            "grant_type": "refresh_token",
        })
        if not result.ok:
            return Result.failure(result.error)

        access_token = result.value.get("access_token")
        if not access_token:
            return Result.failure(AuthError("Token endpoint returned no access token"))
        return Result.success(access_token)

    def exchange_code(self, code: str) -> Result[Tuple[str, str]]:
        """
        Trade an OAuth authorization code for (refresh_token, mailbox_address)

        Used when a user connects the mailbox for the first time.
        """
        result = self._token_request({
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
        })
        if not result.ok:
            return Result.failure(result.error)

        refresh_token = result.value.get("refresh_token")
        access_token = result.value.get("access_token")
        if not refresh_token or not access_token:
            return Result.failure(AuthError(
                "Authorization did not grant offline access; reconnect and approve access"
            ))

        try:
            profile = self._get(access_token, "/profile")
        except WalletError as e:
            return Result.failure(e)

        return Result.success((refresh_token, profile.get("emailAddress", "")))

    def test_connection(self, credential: MailboxCredential) -> Result[str]:
        """
        Verify a credential before it is saved

        Returns the mailbox address the provider reports for the token.
        """
        token_result = self.refresh_access_token(credential)
        if not token_result.ok:
            return Result.failure(token_result.error)

        try:
            profile = self._get(token_result.value, "/profile")
        except WalletError as e:
            return Result.failure(e)

        return Result.success(profile.get("emailAddress", credential.mailbox_address))

    def list_messages(self, token: str, query: str, max_results: int) -> Iterator[MessageRef]:
        """
        Lazily yield message references matching a Gmail search query

        Follows nextPageToken until max_results references were produced.
        Raises AuthError or ProviderError when a page cannot be listed.
        """
        yielded = 0
        page_token = None

        while yielded < max_results:
            params = {"q": query, "maxResults": min(max_results - yielded, MAX_PAGE_SIZE)}
            if page_token:
                params["pageToken"] = page_token

            data = self._get(token, "/messages", params)

            for message in data.get("messages") or []:
                yield MessageRef(id=message["id"], thread_id=message.get("threadId"))
                yielded += 1
                if yielded >= max_results:
                    return

            page_token = data.get("nextPageToken")
            if not page_token:
                return

    def fetch_message(self, token: str, ref: MessageRef) -> Dict:
        return self._get(token, f"/messages/{ref.id}", {"format": "full"})

    def _token_request(self, form: Dict) -> Result[Dict]:
        try:
            response = self.session.post(TOKEN_URL, data=form, timeout=self.timeout)
        except requests.Timeout:
            return Result.failure(ProviderError("Token endpoint timed out"))
        except requests.RequestException as e:
            return Result.failure(ProviderError(f"Token endpoint unreachable: {e}"))

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code in (400, 401, 403):
            reason = payload.get("error_description") or payload.get("error") or "rejected"
            logger.warning(f"⚠️ OAuth token request rejected: {reason}")
            return Result.failure(AuthError(f"Failed to refresh access token: {reason}"))

        if not response.ok:
            return Result.failure(ProviderError(
                f"Token endpoint returned HTTP {response.status_code}"
            ))

        return Result.success(payload)

    def _get(self, token: str, path: str, params: Optional[Dict] = None) -> Dict:
        try:
            response = self.session.get(
                f"{GMAIL_API}{path}",
                headers={"Authorization": f"Bearer {token}"},
                params=params,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise ProviderError(f"Gmail request timed out: {path}") from e
        except requests.RequestException as e:
            raise ProviderError(f"Gmail request failed: {e}") from e

        if response.status_code == 401:
            raise AuthError("Gmail rejected the access token")
        if not response.ok:
            raise ProviderError(f"Gmail returned HTTP {response.status_code} for {path}")

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"Gmail returned invalid JSON for {path}") from e
