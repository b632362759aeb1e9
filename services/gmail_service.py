"""
GmailService - OAuth and message sending through a business's Gmail account
"""

import base64
import time
from dataclasses import dataclass
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Optional, Dict, Any, Tuple
from urllib.parse import urlencode

import httplib2
import requests
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from logging_config import get_logger, performance_logger
from services.common.errors import ExternalServiceError
from utils.datetime_utils import utc_seconds_from_now

logger = get_logger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"

GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/gmail.readonly",
]


@dataclass
class MailMessage:
    """A single outbound campaign email"""
    to: str
    subject: str
    body_html: str
    to_name: Optional[str] = None
    sender: Optional[str] = None


class GmailService:
    """
    Thin client over Google's OAuth endpoints and the Gmail API.

    Every network call carries ``timeout`` seconds. Token payloads are
    returned with an absolute ``expiry`` datetime.
    """

    def __init__(self,
                 client_id: Optional[str],
                 client_secret: Optional[str],
                 redirect_uri: str,
                 default_sender: str = 'PromoPal <noreply@promopal.com>',
                 timeout: float = 10.0):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.default_sender = default_sender
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    # OAuth

    def authorization_url(self, state: str) -> str:
        """Consent URL. prompt=consent makes Google return a refresh token on reconnects."""
        params = {
            'client_id': self.client_id,
            'redirect_uri': self.redirect_uri,
            'response_type': 'code',
            'scope': ' '.join(GMAIL_SCOPES),
            'access_type': 'offline',
            'prompt': 'consent',
            'include_granted_scopes': 'true',
            'state': state,
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def _token_request(self, data: Dict[str, str]) -> Dict[str, Any]:
        started = time.monotonic()
        try:
            response = requests.post(
                GOOGLE_TOKEN_URL,
                data={'client_id': self.client_id, 'client_secret': self.client_secret, **data},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ExternalServiceError('gmail', f"token endpoint unreachable: {e}") from e
        performance_logger.log_api_call('gmail', 'oauth2/token',
                                        (time.monotonic() - started) * 1000, response.status_code)

        if response.status_code >= 400:
            raise ExternalServiceError('gmail', f"token endpoint returned {response.status_code}")

        token_data = response.json()
        if not token_data.get('access_token'):
            raise ExternalServiceError('gmail', "token endpoint returned no access_token")

        expires_in = token_data.get('expires_in')
        return {
            'access_token': token_data['access_token'],
            'refresh_token': token_data.get('refresh_token'),
            'expiry': utc_seconds_from_now(int(expires_in)) if expires_in else None,
        }

    def exchange_code(self, code: str) -> Dict[str, Any]:
        """Exchange an authorization code for tokens"""
        return self._token_request({
            'code': code,
            'grant_type': 'authorization_code',
            'redirect_uri': self.redirect_uri,
        })

    def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        """
        Refresh an access token.

        Google usually omits refresh_token here; the caller keeps the old one.
        """
        return self._token_request({
            'refresh_token': refresh_token,
            'grant_type': 'refresh_token',
        })

    def revoke_token(self, token: str) -> bool:
        """Best-effort revoke; failures are logged, never raised"""
        try:
            response = requests.post(GOOGLE_REVOKE_URL, params={'token': token}, timeout=self.timeout)
            if response.status_code >= 400:
                logger.warning("Gmail token revoke rejected", status_code=response.status_code)
                return False
            return True
        except requests.RequestException as e:
            logger.warning("Gmail token revoke failed", error=str(e))
            return False

    # Gmail API

    def _build_client(self, access_token: str, timeout: Optional[float] = None):
        credentials = Credentials(token=access_token)
        http = AuthorizedHttp(credentials, http=httplib2.Http(timeout=timeout or self.timeout))
        return build('gmail', 'v1', http=http, cache_discovery=False)

    def get_profile_email(self, access_token: str) -> Optional[str]:
        """Address of the connected mailbox, or None if it cannot be read"""
        try:
            profile = self._build_client(access_token).users().getProfile(userId='me').execute()
            return profile.get('emailAddress')
        except (HttpError, httplib2.HttpLib2Error, OSError) as e:
            logger.warning("Could not read Gmail profile", error=str(e))
            return None

    def build_raw_message(self, message: MailMessage) -> str:
        """RFC 2822 message, base64url-encoded as the Gmail API expects"""
        mime = MIMEText(message.body_html, 'html', 'utf-8')
        mime['To'] = formataddr((message.to_name, message.to)) if message.to_name else message.to
        mime['From'] = message.sender or self.default_sender
        mime['Subject'] = message.subject
        return base64.urlsafe_b64encode(mime.as_bytes()).decode('ascii')

    def send_email(self, access_token: str, message: MailMessage,
                   timeout: Optional[float] = None) -> Tuple[bool, str]:
        """
        Send one message.

        ``timeout`` overrides the client default for this call only.

        Returns:
            Tuple of (success, Gmail message id or error description)
        """
        started = time.monotonic()
        try:
            client = self._build_client(access_token, timeout=timeout)
            sent = client.users().messages().send(
                userId='me',
                body={'raw': self.build_raw_message(message)}
            ).execute(num_retries=0)
            performance_logger.log_api_call('gmail', 'messages.send',
                                            (time.monotonic() - started) * 1000, 200)
            return True, sent.get('id', '')
        except HttpError as e:
            status = getattr(e.resp, 'status', None)
            logger.warning("Gmail rejected message", status_code=status, error=str(e))
            return False, f"Gmail API error {status}"
        except Exception as e:
            logger.warning("Failed to send Gmail message", error=str(e))
            return False, f"Failed to send email: {str(e)}"
