# evoting/notifications.py
# Transactional email through the Brevo HTTP API. Delivery is best-effort:
# every failure is logged and reported as False, never raised.
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from evoting.config import (
    BREVO_API_KEY,
    BREVO_API_URL,
    EMAIL_TIMEOUT_SECONDS,
    MAIL_FROM_EMAIL,
    MAIL_FROM_NAME,
)

logger = logging.getLogger(__name__)

REGISTRATION_SUBJECT = "Voter Registration Confirmation - Kirinyaga County Elections"
VOTE_CONFIRMATION_SUBJECT = "Vote Confirmation - Kirinyaga County Elections"


class Notifier:
    def __init__(
        self,
        api_key: str = BREVO_API_KEY,
        api_url: str = BREVO_API_URL,
        sender_email: str = MAIL_FROM_EMAIL,
        sender_name: str = MAIL_FROM_NAME,
        timeout: float = EMAIL_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.sender = {"email": sender_email, "name": sender_name}
        self.timeout = timeout
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _send(self, to_email: str, to_name: str, subject: str, html: str) -> bool:
        if not self.enabled:
            logger.info(f"Email delivery disabled, skipping '{subject}'")
            return False
        payload = {
            "sender": self.sender,
            "to": [{"email": to_email, "name": to_name}],
            "subject": subject,
            "htmlContent": html,
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(
                    self.api_url,
                    headers={"api-key": self.api_key, "accept": "application/json"},
                    json=payload,
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Error sending '{subject}' via Brevo: {e}")
            return False
        logger.info(f"Email '{subject}' accepted by Brevo")
        return True

    def send_registration_email(self, voter: Dict[str, Any]) -> bool:
        html = (
            f"<h2>Welcome, {voter['fullName']}</h2>"
            f"<p>You are registered to vote in {voter['constituency']} constituency, {voter['ward']} ward.</p>"
            f"<p>Your voting number is <strong>{voter['votingNumber']}</strong>. Keep it private; "
            "it can be used only once.</p>"
        )
        return self._send(voter["email"], voter["fullName"], REGISTRATION_SUBJECT, html)

    def send_vote_confirmation(self, voter: Dict[str, Any], voted_at: Optional[datetime] = None) -> bool:
        """``voted_at`` is the commit time of the ballot; the send time is used only when it is missing."""
        voted_at = (voted_at or datetime.now(timezone.utc)).strftime("%Y-%m-%d %H:%M UTC")
        html = (
            f"<h2>Thank you for voting, {voter['fullName']}!</h2>"
            f"<p>Your ballot was recorded at {voted_at} for {voter['county']} county, "
            f"{voter['constituency']} constituency, {voter['ward']} ward.</p>"
            "<p>Your voting number has been disabled and cannot be used again.</p>"
        )
        return self._send(voter["email"], voter["fullName"], VOTE_CONFIRMATION_SUBJECT, html)


notifier = Notifier()


def get_notifier() -> Notifier:
    return notifier
