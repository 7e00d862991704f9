"""SMS gateway HTTP client for installment reminders"""

import re
import time
import httpx
from school_ledger.domain.models import DeliveryResult
from school_ledger.domain.exceptions import MessagingError, ValidationError
from school_ledger.infrastructure.observability.metrics import sms_latency_histogram
from school_ledger.config import settings


def normalize_phone(phone: str) -> str:
    """
    Convert a local or international Ugandan number to 256XXXXXXXXX.

    Example:
        "0772 123456" -> "256772123456"
        "+256772123456" -> "256772123456"
    """
    cleaned = re.sub(r"[^\d+]", "", phone or "")
    if cleaned.startswith("+"):
        cleaned = cleaned[1:]
    if not cleaned:
        raise ValidationError("Phone number is required")
    if cleaned.startswith("0"):
        cleaned = "256" + cleaned[1:]
    elif not cleaned.startswith("256"):
        cleaned = "256" + cleaned
    return cleaned


class SmsClient:
    """Client for an EgoSMS-style plain-text gateway"""

    def __init__(
        self,
        base_url: str | None = None,
        username: str | None = None,
        password: str | None = None,
        sender_id: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.sms_gateway_url
        self.username = username if username is not None else settings.sms_username
        self.password = password if password is not None else settings.sms_password
        self.sender_id = sender_id or settings.sms_sender_id
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    async def send(self, phone: str, message: str) -> DeliveryResult:
        """
        Deliver one message. The gateway answers in plain text; a body
        containing "OK" means it accepted the message.

        Raises:
            ValidationError: No usable phone number
            MessagingError: Missing credentials, timeout or HTTP errors
        """
        if not self.username or not self.password:
            raise MessagingError("SMS gateway credentials are not configured")

        number = normalize_phone(phone)
        params = {
            "username": self.username,
            "password": self.password,
            "sender": self.sender_id,
            "number": number,
            "message": message,
        }

        start_time = time.time()
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.get(self.base_url, params=params)
                response.raise_for_status()
            except httpx.TimeoutException as e:
                raise MessagingError(f"SMS gateway timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise MessagingError(f"SMS gateway error: {e.response.status_code}") from e
            except httpx.HTTPError as e:
                raise MessagingError(f"SMS gateway unreachable: {e}") from e
            finally:
                sms_latency_histogram.observe(time.time() - start_time)

        body = response.text.strip()
        return DeliveryResult(success="OK" in body, detail=body)
