"""
Coupon eligibility checks and discount computation.

Nothing in this module writes to the database, so a coupon can be
re-validated any number of times (checkout preview, then again inside the
redemption transaction) without side effects.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from django.utils import timezone

from .errors import CouponError
from .models import Coupon, CouponUsage

TWO_PLACES = Decimal('0.01')


@dataclass(frozen=True)
class ValidatedDiscount:
    original_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal


def to_money(amount):
    return Decimal(str(amount)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def compute_discount(coupon, amount):
    """Discount granted by ``coupon`` on ``amount``, never above ``amount``"""
    amount = to_money(amount)
    value = to_money(coupon.value or 0)

    if coupon.type == Coupon.TYPE_PERCENTAGE:
        discount = to_money(amount * value / Decimal('100'))
    elif coupon.type == Coupon.TYPE_FLAT:
        discount = value
    elif coupon.type == Coupon.TYPE_FREE_PLAN:
        discount = amount
    else:
        raise ValueError(f"Unsupported coupon type: {coupon.type}")

    return min(max(discount, Decimal('0.00')), amount)


def validate_coupon(coupon, plan_code, user, amount, now=None):
    """
    Decide whether ``coupon`` can discount a purchase of ``plan_code`` by
    ``user`` priced at ``amount``.

    Checks run in a fixed order and the first failure wins:
    existence, active flag, expiry, plan eligibility, global usage cap,
    per-user single use. Returns a ValidatedDiscount or raises CouponError.
    """
    if coupon is None:
        raise CouponError(CouponError.NOT_FOUND)
    if not coupon.is_active:
        raise CouponError(CouponError.INACTIVE)
    if coupon.is_expired(now or timezone.now()):
        raise CouponError(CouponError.EXPIRED)
    if plan_code not in (coupon.applicable_plans or []):
        raise CouponError(CouponError.PLAN_NOT_ELIGIBLE)
    if coupon.has_global_limit and coupon.used_count >= coupon.usage_limit_total:
        raise CouponError(CouponError.LIMIT_REACHED)
    if coupon.usage_limit_per_user and user is not None:
        if CouponUsage.objects.filter(coupon_id=coupon.pk, user_id=user.pk).exists():
            raise CouponError(CouponError.ALREADY_USED)

    original = to_money(amount)
    discount = compute_discount(coupon, original)
    return ValidatedDiscount(
        original_amount=original,
        discount_amount=discount,
        final_amount=original - discount,
    )
