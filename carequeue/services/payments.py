"""Payment gateway adapter interface.

The refund policy only decides amounts; moving money is the gateway's job.
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from uuid import uuid4

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """Raised by gateway adapters when a payment operation fails."""

    pass


class PaymentGateway(ABC):
    """Abstract base class for payment gateway adapters."""

    @abstractmethod
    async def capture(self, reference: str, amount: Decimal) -> str:
        """Capture a payment and return the gateway transaction id."""
        pass

    @abstractmethod
    async def refund(self, reference: str, amount: Decimal, reason: str) -> str:
        """Refund part or all of a captured payment.

        Raises PaymentGatewayError on failure.
        """
        pass


class NullPaymentGateway(PaymentGateway):
    """Gateway that records requests in the log without moving money."""

    async def capture(self, reference: str, amount: Decimal) -> str:
        transaction_id = f"cap_{uuid4().hex[:16]}"
        logger.info(f"Capture {amount} for {reference} -> {transaction_id}")
        return transaction_id

    async def refund(self, reference: str, amount: Decimal, reason: str) -> str:
        transaction_id = f"ref_{uuid4().hex[:16]}"
        logger.info(f"Refund {amount} for {reference} ({reason}) -> {transaction_id}")
        return transaction_id
