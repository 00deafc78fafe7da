"""
Webhook Service
Verifies inbound ACH processor webhooks signed with a shared secret
"""

import hashlib
import hmac
import logging
from typing import Optional, Union

from .config import settings
from .exceptions import WebhookSignatureError

log = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"


class WebhookVerifier:
    """HMAC-SHA256 signatures over the raw request body"""

    def __init__(self, secret: Optional[str]):
        self.secret = secret

    @staticmethod
    def generate_signature(body: Union[bytes, str], secret: str) -> str:
        """Generate HMAC signature for a webhook body"""
        if isinstance(body, str):
            body = body.encode()
        return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()

    def verify(self, body: bytes, signature: Optional[str]) -> None:
        """
        Raise WebhookSignatureError unless signature matches body.

        An unset secret rejects every request.
        """
        if not self.secret:
            log.warning("Webhook rejected: ACH_WEBHOOK_SECRET is not configured")
            raise WebhookSignatureError("Webhook secret not configured")

        if not signature:
            log.warning("Webhook rejected: missing signature header")
            raise WebhookSignatureError("Missing webhook signature")

        expected = self.generate_signature(body, self.secret)
        if not hmac.compare_digest(signature.strip().lower(), expected):
            log.warning("Webhook signature verification failed")
            raise WebhookSignatureError("Invalid webhook signature")


def get_webhook_verifier() -> WebhookVerifier:
    return WebhookVerifier(settings.ACH_WEBHOOK_SECRET)
