"""Canonical payment statuses and provider status normalization.

Every adapter maps its provider's vocabulary onto these enums through a
StatusNormalizer, so two code paths never disagree about what a native
status means.
"""

from enum import Enum
from typing import Mapping


class PaymentStatus(str, Enum):
    """Canonical payment lifecycle state."""
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @classmethod
    def can_transition(cls, source: "PaymentStatus", target: "PaymentStatus") -> bool:
        """Check whether the lifecycle allows moving from source to target."""
        return target in ALLOWED_TRANSITIONS.get(source, frozenset())


class RefundStatus(str, Enum):
    """Canonical refund state."""
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.PROCESSING,
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    }),
    PaymentStatus.PROCESSING: frozenset({
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    }),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

# PAID is terminal unless later refunded
TERMINAL_STATUSES = frozenset({
    PaymentStatus.PAID,
    PaymentStatus.FAILED,
    PaymentStatus.CANCELLED,
    PaymentStatus.REFUNDED,
})


class StatusNormalizer:
    """Case-insensitive lookup from native status strings to a canonical enum.
    
    Unknown statuses map to the default (the least final state) instead of
    raising, because providers add sub-statuses without notice.
    """

    def __init__(self, mapping: Mapping[str, Enum], default: Enum):
        self._mapping = {key.lower(): value for key, value in mapping.items()}
        self.default = default

    def normalize(self, native_status) -> Enum:
        """Map a native status to its canonical value.
        
        Args:
            native_status: Status string reported by the provider (may be None)
            
        Returns:
            Canonical status, or the default for unmapped values
        """
        if not native_status:
            return self.default
        return self._mapping.get(str(native_status).strip().lower(), self.default)

    __call__ = normalize

    @property
    def known_statuses(self) -> frozenset[str]:
        return frozenset(self._mapping)

    def __contains__(self, native_status: str) -> bool:
        return bool(native_status) and native_status.lower() in self._mapping
