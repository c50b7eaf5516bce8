"""
Payment capture seam.

The lifecycle controller calls ``process_payment`` exactly once, when a trip
completes. The gateway class is configured with the ``PAYMENT_GATEWAY``
setting (a dotted import path) so deployments can plug in a real processor.
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_CAPTURED = "captured"


@dataclass(frozen=True)
class PaymentRequest:
    payer_id: int
    booking_id: int
    amount: Decimal
    method: str


@dataclass(frozen=True)
class PaymentTransaction:
    reference: str
    status: str
    amount: Decimal


class PaymentGateway:
    def process_payment(self, request: PaymentRequest) -> PaymentTransaction:
        raise NotImplementedError


class DeferredCaptureGateway(PaymentGateway):
    """Records the charge as pending; a downstream processor settles it."""

    def process_payment(self, request: PaymentRequest) -> PaymentTransaction:
        reference = f"bk{request.booking_id}-{uuid.uuid4().hex[:12]}"
        logger.info(
            "Deferred %s payment of %s for booking %s (%s)",
            request.method, request.amount, request.booking_id, reference,
        )
        return PaymentTransaction(reference=reference, status=STATUS_PENDING, amount=request.amount)


def get_payment_gateway() -> PaymentGateway:
    path = getattr(settings, "PAYMENT_GATEWAY", "services.payments.DeferredCaptureGateway")
    return import_string(path)()


def process_payment(payer_id: int, booking_id: int, amount: Decimal, method: str) -> PaymentTransaction:
    request = PaymentRequest(payer_id=payer_id, booking_id=booking_id, amount=amount, method=method)
    return get_payment_gateway().process_payment(request)
