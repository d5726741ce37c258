"""Webhook signature verification.

Signatures are computed over the raw request bytes, compared in constant
time, and only then is the body parsed. A failed check never exposes the
payload to the caller.
"""

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

EventExtractor = Callable[[dict], tuple[Optional[str], Any]]

Payload = Union[bytes, bytearray, str]

# Unix timestamps above this are taken to be in milliseconds
_MILLISECOND_THRESHOLD = 10 ** 11


@dataclass
class WebhookVerificationResult:
    """Outcome of a webhook verification.

    ``event`` and ``data`` are only populated when ``is_valid`` is true.
    ``error`` is a generic reason safe to log; it never echoes the payload.
    """
    is_valid: bool
    event: Optional[str] = None
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def invalid(cls, reason: str) -> "WebhookVerificationResult":
        return cls(is_valid=False, error=reason)


def default_event_extractor(document: dict) -> tuple[Optional[str], Any]:
    return document.get("event"), document.get("payload")


def _to_bytes(payload: Payload) -> bytes:
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return bytes(payload)


def parse_timestamp(timestamp: Optional[str]) -> Optional[float]:
    """Parse a Unix timestamp header in seconds or milliseconds."""
    if timestamp is None:
        return None
    try:
        value = float(str(timestamp).strip())
    except ValueError:
        return None
    if value > _MILLISECOND_THRESHOLD:
        value /= 1000
    return value


class WebhookVerifier:
    """HMAC verifier for providers that sign the raw body.

    Args:
        secret: Webhook secret for this organization's gateway
        encoding: ``hex`` or ``base64`` digest encoding
        include_timestamp: Prefix the signed message with the timestamp
        timestamp_separator: Bytes placed between timestamp and body
        tolerance_seconds: Replay window for supplied timestamps, 0 disables
        extract_event: Maps the decoded document to (event type, event data)
        clock: Time source, seconds since the epoch
    """

    def __init__(
        self,
        secret: str,
        *,
        encoding: str = "hex",
        include_timestamp: bool = False,
        timestamp_separator: str = "",
        tolerance_seconds: int = 0,
        extract_event: Optional[EventExtractor] = None,
        clock: Callable[[], float] = time.time,
        digestmod=hashlib.sha256,
    ):
        if not secret:
            raise ValueError("Webhook secret must not be empty")
        if encoding not in ("hex", "base64"):
            raise ValueError(f"Unsupported signature encoding: {encoding}")
        self._secret = secret.encode("utf-8")
        self.encoding = encoding
        self.include_timestamp = include_timestamp
        self.timestamp_separator = timestamp_separator
        self.tolerance_seconds = tolerance_seconds
        self.extract_event = extract_event or default_event_extractor
        self.clock = clock
        self.digestmod = digestmod

    def _signed_message(self, body: bytes, timestamp: Optional[str]) -> bytes:
        if self.include_timestamp and timestamp:
            return f"{timestamp}{self.timestamp_separator}".encode("utf-8") + body
        return body

    def _digest(self, message: bytes) -> str:
        mac = hmac.new(self._secret, message, self.digestmod)
        if self.encoding == "base64":
            return base64.b64encode(mac.digest()).decode("ascii")
        return mac.hexdigest()

    def compute_signature(self, payload: Payload, timestamp: Optional[str] = None) -> str:
        """Compute the signature the provider would send for this body."""
        return self._digest(self._signed_message(_to_bytes(payload), timestamp))

    def sign(self, payload: Payload, timestamp: Optional[str] = None) -> str:
        """Produce the signature header value for a body."""
        return self.compute_signature(payload, timestamp)

    def verify(
        self,
        signature: Optional[str],
        payload: Payload,
        timestamp: Optional[str] = None,
    ) -> WebhookVerificationResult:
        """Verify a signature header against the raw body.

        Args:
            signature: Signature header value
            payload: Raw request body
            timestamp: Timestamp header value, if any

        Returns:
            WebhookVerificationResult
        """
        if not signature:
            return WebhookVerificationResult.invalid("missing signature")
        try:
            body = _to_bytes(payload)
        except TypeError:
            return WebhookVerificationResult.invalid("unreadable payload")

        if timestamp is not None and not self._within_tolerance(timestamp):
            return WebhookVerificationResult.invalid("timestamp outside tolerance")

        expected = self.compute_signature(body, timestamp)
        if not self._matches(expected, signature):
            return WebhookVerificationResult.invalid("signature mismatch")
        return self._decode(body)

    def _within_tolerance(self, timestamp: Optional[str]) -> bool:
        if not self.tolerance_seconds:
            return True
        value = parse_timestamp(timestamp)
        if value is None:
            return False
        return abs(self.clock() - value) <= self.tolerance_seconds

    @staticmethod
    def _matches(expected: str, received: str) -> bool:
        return hmac.compare_digest(
            expected.encode("utf-8"),
            received.strip().encode("utf-8"),
        )

    def _decode(self, body: bytes) -> WebhookVerificationResult:
        try:
            document = json.loads(body)
            if not isinstance(document, dict):
                return WebhookVerificationResult.invalid("malformed payload")
            event, data = self.extract_event(document)
        except (ValueError, TypeError, KeyError, AttributeError):
            return WebhookVerificationResult.invalid("malformed payload")
        return WebhookVerificationResult(is_valid=True, event=event, data=data)

