"""
Платёжный процессор.

Ядру бронирований нужны только сумма, статус и идентификатор, поэтому
процессор описан протоколом, а Stripe - одна из реализаций. Клиент
Stripe создаётся на экземпляр адаптера, глобального состояния нет.
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.core.config import settings
from rentals.core.errors import InvalidStateTransition, PaymentUnavailable
from rentals.models import Booking, BookingStatus, PaymentStatus, utcnow
from rentals.services.booking_log_service import BookingLogService

logger = logging.getLogger(__name__)


@dataclass
class PaymentIntent:
    id: str
    amount: Decimal
    currency: str
    status: str
    client_secret: Optional[str] = None


@dataclass
class Refund:
    id: str
    amount: Decimal
    status: str


class PaymentProcessor(Protocol):
    async def create_intent(
        self, amount: Decimal, currency: str, metadata: dict
    ) -> PaymentIntent: ...

    async def confirm(self, intent_id: str) -> PaymentIntent: ...

    async def refund(self, intent_id: str, amount: Decimal) -> Refund: ...


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).to_integral_value())


class StripePaymentProcessor:
    """Stripe SDK синхронный, вызовы уходят в отдельный поток."""

    def __init__(self, api_key: str):
        self.client = stripe.StripeClient(api_key)

    async def create_intent(self, amount: Decimal, currency: str, metadata: dict) -> PaymentIntent:
        try:
            intent = await asyncio.to_thread(
                self.client.payment_intents.create,
                params={
                    "amount": to_minor_units(amount),
                    "currency": currency.lower(),
                    "metadata": metadata,
                    "automatic_payment_methods": {"enabled": True},
                },
            )
        except stripe.StripeError as e:
            raise PaymentUnavailable(f"Payment initialization failed: {e}") from e
        return self._intent(intent)

    async def confirm(self, intent_id: str) -> PaymentIntent:
        try:
            intent = await asyncio.to_thread(self.client.payment_intents.retrieve, intent_id)
        except stripe.StripeError as e:
            raise PaymentUnavailable(f"Failed to verify payment: {e}") from e
        return self._intent(intent)

    async def refund(self, intent_id: str, amount: Decimal) -> Refund:
        try:
            refund = await asyncio.to_thread(
                self.client.refunds.create,
                params={"payment_intent": intent_id, "amount": to_minor_units(amount)},
            )
        except stripe.StripeError as e:
            raise PaymentUnavailable(f"Refund failed: {e}") from e
        return Refund(id=refund.id, amount=Decimal(refund.amount) / 100, status=refund.status)

    @staticmethod
    def _intent(intent) -> PaymentIntent:
        return PaymentIntent(
            id=intent.id,
            amount=Decimal(intent.amount) / 100,
            currency=intent.currency.upper(),
            status=intent.status,
            client_secret=getattr(intent, "client_secret", None),
        )


def build_processor() -> Optional[PaymentProcessor]:
    if not settings.stripe_api_key:
        logger.warning("STRIPE_API_KEY is not set, payment functionality is disabled")
        return None
    return StripePaymentProcessor(settings.stripe_api_key)


def require_processor(processor: Optional[PaymentProcessor]) -> PaymentProcessor:
    if processor is None:
        raise PaymentUnavailable("Payment processor is not configured")
    return processor


class PaymentService:
    PAYABLE_STATUSES = {BookingStatus.PENDING, BookingStatus.CONFIRMED}

    @staticmethod
    async def create_payment_intent(
        db: AsyncSession, booking: Booking, processor: Optional[PaymentProcessor]
    ) -> PaymentIntent:
        processor = require_processor(processor)
        if booking.status not in PaymentService.PAYABLE_STATUSES:
            raise InvalidStateTransition(f"Booking {booking.reference} is {booking.status.value}, payment not allowed")
        if booking.payment_status == PaymentStatus.COMPLETED:
            raise InvalidStateTransition(f"Booking {booking.reference} is already paid")

        intent = await processor.create_intent(
            booking.total_amount,
            booking.currency,
            {"booking_id": str(booking.id), "booking_reference": booking.reference},
        )
        booking.payment_intent_id = intent.id
        booking.payment_status = PaymentStatus.PENDING
        await BookingLogService.log_action(
            db, booking.id, "payment_intent_created", details={"intent_id": intent.id}
        )
        await db.commit()
        logger.info(f"💳 Payment intent {intent.id} created for {booking.reference}")
        return intent

    @staticmethod
    async def confirm_payment(
        db: AsyncSession, booking: Booking, processor: Optional[PaymentProcessor]
    ) -> Booking:
        processor = require_processor(processor)
        if not booking.payment_intent_id:
            raise InvalidStateTransition(f"Booking {booking.reference} has no payment intent")

        intent = await processor.confirm(booking.payment_intent_id)
        if intent.status == "succeeded":
            booking.payment_status = PaymentStatus.COMPLETED
            booking.transaction_id = intent.id
            booking.paid_at = utcnow()
        elif intent.status in ("canceled", "requires_payment_method"):
            booking.payment_status = PaymentStatus.FAILED

        await BookingLogService.log_action(
            db,
            booking.id,
            "payment_confirmed" if booking.payment_status == PaymentStatus.COMPLETED else "payment_checked",
            details={"intent_id": intent.id, "intent_status": intent.status},
        )
        await db.commit()
        return booking

    @staticmethod
    async def refund_booking(
        db: AsyncSession,
        booking: Booking,
        amount: Decimal,
        processor: Optional[PaymentProcessor],
    ) -> Optional[Refund]:
        """
        Возврат по отменённой брони, best effort: ошибки процессора
        логируются, отмена от них не откатывается.
        """
        if booking.payment_status != PaymentStatus.COMPLETED or not booking.payment_intent_id:
            return None
        if amount <= 0:
            return None
        if processor is None:
            logger.warning(f"Refund for {booking.reference} skipped: payment processor not configured")
            return None

        # Процессор не вернёт больше, чем списал: залог уже внутри total_amount
        charge = min(amount, Decimal(booking.total_amount))
        try:
            refund = await processor.refund(booking.payment_intent_id, charge)
        except Exception as e:
            logger.error(f"❌ Refund failed for {booking.reference}: {e}", exc_info=True)
            return None

        booking.refund_amount = charge
        booking.refunded_at = utcnow()
        booking.payment_status = (
            PaymentStatus.REFUNDED if charge >= booking.total_amount else PaymentStatus.PARTIALLY_REFUNDED
        )
        await BookingLogService.log_action(
            db, booking.id, "refund_issued", details={"refund_id": refund.id, "amount": str(charge)}
        )
        await db.commit()
        logger.info(f"✅ Refund {refund.id} ({charge}) issued for {booking.reference}")
        return refund
