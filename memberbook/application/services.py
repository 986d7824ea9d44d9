"""Application Services - Booking use cases"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from memberbook.domain.cancellation import CancellationPolicy, CancellationQuote
from memberbook.domain.clock import Clock
from memberbook.domain.context import CancellationContext, PricingContext, RequestContext
from memberbook.domain.discounts import DiscountPolicy
from memberbook.domain.entities import Reservation
from memberbook.domain.policies import AdmissionDecision, ReservationPolicy
from memberbook.domain.value_objects import Money
from memberbook.utils.config import Settings, get_settings
from memberbook.utils.logger import get_logger

logger = get_logger(__name__)


class BookingOutcome(BaseModel):
    """Admission decision plus the reservation it produced, if any"""
    decision: AdmissionDecision
    reservation: Optional[Reservation] = None

    model_config = ConfigDict(frozen=True)

    @property
    def accepted(self) -> bool:
        return self.reservation is not None


class PriceQuote(BaseModel):
    original: Money
    final: Money
    policy: str

    model_config = ConfigDict(frozen=True)

    @property
    def discount(self) -> Money:
        return self.original - self.final


class CancellationPreview(BaseModel):
    """What cancelling now would cost, without touching the reservation"""
    reservation_id: str
    quote: CancellationQuote
    cancellable: bool
    message: str

    model_config = ConfigDict(frozen=True)


class CancellationResult(BaseModel):
    reservation_id: str
    success: bool
    message: str
    quote: Optional[CancellationQuote] = None
    cancelled_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    @staticmethod
    def succeeded(reservation: Reservation, quote: CancellationQuote) -> "CancellationResult":
        return CancellationResult(
            reservation_id=reservation.reservation_id,
            success=True,
            message="Reservation cancelled",
            quote=quote,
            cancelled_at=reservation.cancelled_at,
        )

    @staticmethod
    def failed(reservation: Reservation, message: str, quote: Optional[CancellationQuote] = None) -> "CancellationResult":
        return CancellationResult(
            reservation_id=reservation.reservation_id,
            success=False,
            message=message,
            quote=quote,
        )


class ReservationService:
    """Service for reservation admission, pricing and lifecycle use cases"""

    def __init__(self, clock: Clock, settings: Optional[Settings] = None):
        self.clock = clock
        self.settings = settings or get_settings()

    def evaluate(self, policy: ReservationPolicy, ctx: RequestContext) -> AdmissionDecision:
        decision = policy.evaluate(ctx)
        if decision.allowed:
            logger.info(
                "Admitted member %s for %s at %s under '%s'",
                ctx.member.member_id, ctx.resource.resource_id, ctx.window, policy.description,
            )
        else:
            logger.warning(
                "Denied member %s for %s at %s: %s",
                ctx.member.member_id, ctx.resource.resource_id, ctx.window, decision.reason,
            )
        return decision

    def request_reservation(
        self,
        policy: ReservationPolicy,
        ctx: RequestContext,
        reservation_id: Optional[str] = None,
    ) -> BookingOutcome:
        """Evaluate the policy and create a REQUESTED reservation when admitted"""
        decision = self.evaluate(policy, ctx)
        if not decision.allowed:
            return BookingOutcome(decision=decision)

        reservation = Reservation.create(
            member_id=ctx.member.member_id,
            resource_id=ctx.resource.resource_id,
            window=ctx.window,
            clock=self.clock,
            reservation_id=reservation_id,
            max_horizon_days=self.settings.reservation_horizon_days,
        )
        logger.info("Reservation %s created", reservation.reservation_id)
        return BookingOutcome(decision=decision, reservation=reservation)

    def quote_price(self, price: Money, discount: DiscountPolicy, ctx: PricingContext) -> PriceQuote:
        final = discount.apply(price, ctx)
        logger.info("Priced %s -> %s using %s", price, final, discount.describe())
        return PriceQuote(original=price, final=final, policy=discount.describe())

    # ==================== LIFECYCLE ====================
    def confirm(self, reservation: Reservation) -> Reservation:
        reservation.confirm()
        logger.info("Reservation %s confirmed", reservation.reservation_id)
        return reservation

    def start_using(self, reservation: Reservation) -> Reservation:
        reservation.start_using()
        logger.info("Reservation %s in use", reservation.reservation_id)
        return reservation

    def complete(self, reservation: Reservation) -> Reservation:
        reservation.complete()
        logger.info("Reservation %s completed", reservation.reservation_id)
        return reservation


class CancellationService:
    """Service for cancellation use cases"""

    def __init__(self, clock: Clock):
        self.clock = clock

    def _context(self, reservation: Reservation, first_time: bool) -> CancellationContext:
        return CancellationContext(
            reservation_start=reservation.window.start,
            cancelled_at=self.clock.now(),
            first_time=first_time,
        )

    def preview(
        self,
        reservation: Reservation,
        policy: CancellationPolicy,
        price: Money,
        first_time: bool = False,
    ) -> CancellationPreview:
        quote = policy.quote(price, self._context(reservation, first_time))
        cancellable = reservation.is_cancellable() and quote.allowed
        if not reservation.is_cancellable():
            message = f"Reservation is {reservation.status.value} and cannot be cancelled"
        elif not quote.allowed:
            message = quote.rule
        else:
            message = f"Cancellation fee {quote.fee}, refund {quote.refund}"
        return CancellationPreview(
            reservation_id=reservation.reservation_id,
            quote=quote,
            cancellable=cancellable,
            message=message,
        )

    def cancel(
        self,
        reservation: Reservation,
        policy: CancellationPolicy,
        price: Money,
        reason: str,
        first_time: bool = False,
    ) -> CancellationResult:
        """Gate on the policy first, then cancel; refusals come back as a failed result"""
        if not reservation.is_cancellable():
            logger.warning(
                "Reservation %s cannot be cancelled from %s",
                reservation.reservation_id, reservation.status.value,
            )
            return CancellationResult.failed(
                reservation, f"Reservation is {reservation.status.value} and cannot be cancelled"
            )

        quote = policy.quote(price, self._context(reservation, first_time))
        if not quote.allowed:
            logger.warning("Cancellation of %s refused: %s", reservation.reservation_id, quote.rule)
            return CancellationResult.failed(reservation, quote.rule, quote)

        reservation.cancel(reason)
        logger.info(
            "Reservation %s cancelled (fee %s, refund %s)",
            reservation.reservation_id, quote.fee, quote.refund,
        )
        return CancellationResult.succeeded(reservation, quote)

    def auto_cancel(self, reservation: Reservation, reason: str) -> CancellationResult:
        if not reservation.is_cancellable():
            return CancellationResult.failed(
                reservation, f"Reservation is {reservation.status.value} and cannot be cancelled"
            )
        reservation.auto_cancel(reason)
        logger.info("Reservation %s cancelled by the system: %s", reservation.reservation_id, reason)
        return CancellationResult(
            reservation_id=reservation.reservation_id,
            success=True,
            message="Reservation cancelled by the system",
            cancelled_at=reservation.cancelled_at,
        )

    def process_no_show(self, reservation: Reservation) -> bool:
        """Cancel a confirmed reservation whose start has passed; returns whether it did"""
        if not reservation.is_no_show():
            return False
        reservation.auto_cancel("no-show")
        logger.info("Reservation %s cancelled as a no-show", reservation.reservation_id)
        return True
