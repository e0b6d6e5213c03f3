import base64
import logging
import re
from datetime import datetime
from typing import Any, Optional

import requests

from config import Settings
from models import (
    DEFAULT_ACCOUNT_REFERENCE,
    DEFAULT_TRANSACTION_DESC,
    PushAcknowledgment,
)

logger = logging.getLogger(__name__)

COUNTRY_CODE = "254"
TRANSACTION_TYPE = "CustomerPayBillOnline"
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

_MSISDN_RE = re.compile(r"^254\d{9}$")


class MpesaError(Exception):
    """Base class for M-Pesa integration failures."""


class AuthenticationError(MpesaError):
    """Credential exchange rejected or the token endpoint was unreachable."""


class SubmissionError(MpesaError):
    """STK push rejected by the provider or not delivered."""

    def __init__(self, message: str, error_body: Any = None):
        super().__init__(message)
        self.error_body = error_body


class MalformedCallbackError(MpesaError):
    """Callback payload is missing the expected Body.stkCallback structure."""


# Utility Functions
def format_phone_number(phone: str) -> str:
    """Replace a leading zero with the country code; pass anything else through."""
    formatted = phone
    if phone.startswith("0"):
        formatted = COUNTRY_CODE + phone[1:]
    if not _MSISDN_RE.match(formatted):
        logger.warning(f"Phone number {formatted!r} is not a 12-digit {COUNTRY_CODE} MSISDN, forwarding as-is")
    return formatted


def generate_timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


def generate_password(shortcode: str, passkey: str, timestamp: str) -> str:
    """base64(shortcode + passkey + timestamp), as required by the STK push API."""
    raw = f"{shortcode}{passkey}{timestamp}"
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def _error_body(response: Optional[requests.Response]) -> Any:
    if response is None:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text or None


class MpesaClient:
    """Orchestrates a single STK push: token exchange, signing, submission.

    Each call is one best-effort attempt; tokens are fetched per push and
    never shared between requests. Without an injected session each call
    goes through the module-level `requests` functions, so concurrent pushes
    share no connection or cookie state.
    """

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.base_url = settings.base_url
        self.session = session

    def get_access_token(self) -> str:
        """Exchange consumer key/secret for a bearer token."""
        credentials = f"{self.settings.mpesa_consumer_key}:{self.settings.mpesa_consumer_secret}"
        auth = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
        headers = {"Authorization": f"Basic {auth}"}
        url = f"{self.base_url}/oauth/v1/generate"
        try:
            response = (self.session or requests).get(
                url,
                params={"grant_type": "client_credentials"},
                headers=headers,
                timeout=self.settings.token_timeout_seconds,
            )
            response.raise_for_status()
            token = response.json().get("access_token")
        except requests.exceptions.RequestException as e:
            logger.error(f"Error getting access token: {_error_body(e.response) or e}")
            raise AuthenticationError("Failed to get access token") from e
        except ValueError as e:
            logger.error(f"Token endpoint returned a non-JSON body: {e}")
            raise AuthenticationError("Failed to get access token") from e

        if not token:
            raise AuthenticationError("Token endpoint response carried no access_token")
        return token

    def build_payload(
        self,
        amount: float,
        phone_number: str,
        account_reference: Optional[str],
        transaction_desc: Optional[str],
        timestamp: str,
    ) -> dict:
        shortcode = self.settings.mpesa_shortcode
        return {
            "BusinessShortCode": shortcode,
            "Password": generate_password(shortcode, self.settings.mpesa_passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": TRANSACTION_TYPE,
            "Amount": int(amount) if float(amount).is_integer() else amount,
            "PartyA": phone_number,
            "PartyB": shortcode,
            "PhoneNumber": phone_number,
            "CallBackURL": self.settings.callback_url,
            "AccountReference": account_reference or DEFAULT_ACCOUNT_REFERENCE,
            "TransactionDesc": transaction_desc or DEFAULT_TRANSACTION_DESC,
        }

    def initiate_push(
        self,
        amount: float,
        phone_number: str,
        account_reference: Optional[str] = None,
        transaction_desc: Optional[str] = None,
    ) -> PushAcknowledgment:
        """Send an STK push prompt to ``phone_number`` and return the provider acknowledgment."""
        if isinstance(amount, bool) or not isinstance(amount, (int, float)) or amount <= 0:
            raise ValueError("amount must be a positive number")
        if not phone_number:
            raise ValueError("phone_number is required")

        formatted_phone = format_phone_number(phone_number)
        timestamp = generate_timestamp()

        token = self.get_access_token()

        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        payload = self.build_payload(amount, formatted_phone, account_reference, transaction_desc, timestamp)
        url = f"{self.base_url}/mpesa/stkpush/v1/processrequest"
        try:
            response = (self.session or requests).post(
                url,
                json=payload,
                headers=headers,
                timeout=self.settings.push_timeout_seconds,
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            error_body = _error_body(e.response)
            logger.error(f"STK Push Error: {error_body or e}")
            raise SubmissionError("STK push submission failed", error_body=error_body or str(e)) from e
        except ValueError as e:
            logger.error(f"STK push endpoint returned a non-JSON body: {e}")
            raise SubmissionError("STK push submission failed", error_body=str(e)) from e

        ack = PushAcknowledgment.model_validate(data)
        logger.info(f"STK push accepted CheckoutRequestID={ack.checkout_request_id} phone={formatted_phone}")
        return ack
