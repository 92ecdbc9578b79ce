"""
Coupon store operations and atomic redemption.

The usage cap is enforced in the database: the redemption transaction locks
the coupon row and increments ``used_count`` with a conditional UPDATE, so
concurrent requests served by different processes cannot overshoot the cap.
"""
import logging
from dataclasses import dataclass

from django.db import transaction
from django.db.models import F, Q
from django.db.models.deletion import ProtectedError
from django.utils import timezone

from .errors import CouponError
from .models import Coupon, CouponUsage
from .validators import ValidatedDiscount, validate_coupon

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppliedCoupon:
    usage: CouponUsage
    discount: ValidatedDiscount


def normalize_code(code):
    return (code or '').strip().upper()


def find_coupon(code):
    """Case-insensitive lookup by code; raises NOT_FOUND"""
    coupon = Coupon.objects.filter(code=normalize_code(code)).first()
    if coupon is None:
        raise CouponError(CouponError.NOT_FOUND)
    return coupon


def get_coupon(pk):
    coupon = Coupon.objects.filter(pk=pk).first()
    if coupon is None:
        raise CouponError(CouponError.NOT_FOUND)
    return coupon


def reserve_redemption(coupon_id):
    """
    Take one slot of the coupon's usage cap.

    Returns False when the cap is already exhausted. Per-user and uncapped
    coupons only have their counter incremented.
    """
    has_slot = (
        Q(usage_limit_total__isnull=True)
        | Q(usage_limit_per_user=True)
        | Q(used_count__lt=F('usage_limit_total'))
    )
    updated = Coupon.objects.filter(has_slot, pk=coupon_id).update(used_count=F('used_count') + 1)
    return updated == 1


def apply_coupon(coupon, payment, now=None):
    """
    Redeem ``coupon`` against a pending subscription ``payment``.

    Validation, the counter increment, the usage row and the discounted
    payment amount are committed together or not at all.
    """
    now = now or timezone.now()

    with transaction.atomic():
        locked = Coupon.objects.select_for_update().filter(pk=coupon.pk).first()
        discount = validate_coupon(locked, payment.plan.code, payment.user, payment.original_amount, now=now)

        if not reserve_redemption(locked.pk):
            logger.warning(f"Coupon {locked.code} lost a redemption race for payment {payment.order_id}")
            raise CouponError(CouponError.LIMIT_REACHED)

        usage = CouponUsage.objects.create(
            coupon=locked,
            coupon_code=locked.code,
            user=payment.user,
            company=payment.company,
            plan=payment.plan,
            payment=payment,
            original_amount=discount.original_amount,
            discount_amount=discount.discount_amount,
            final_amount=discount.final_amount,
            applied_at=now,
        )

        payment.discount_amount = discount.discount_amount
        payment.amount = discount.final_amount
        payment.coupon_code = locked.code
        payment.save(update_fields=['discount_amount', 'amount', 'coupon_code', 'updated_at'])

    coupon.refresh_from_db(fields=['used_count'])
    logger.info(
        f"Coupon {locked.code} redeemed by user {payment.user_id} on plan {payment.plan.code}: "
        f"{discount.original_amount} -> {discount.final_amount}"
    )
    return AppliedCoupon(usage=usage, discount=discount)


def toggle_coupon(coupon):
    """Flip ``is_active`` and return the refreshed coupon"""
    with transaction.atomic():
        locked = Coupon.objects.select_for_update().get(pk=coupon.pk)
        locked.is_active = not locked.is_active
        locked.save(update_fields=['is_active', 'updated_at'])
    logger.info(f"Coupon {locked.code} {'activated' if locked.is_active else 'deactivated'}")
    return locked


def delete_coupon(coupon):
    """Delete an unredeemed coupon; redeemed ones are kept for audit"""
    with transaction.atomic():
        locked = Coupon.objects.select_for_update().filter(pk=coupon.pk).first()
        if locked is None:
            raise CouponError(CouponError.NOT_FOUND)
        if locked.used_count > 0 or locked.usages.exists():
            raise CouponError(CouponError.HAS_USAGE)
        try:
            locked.delete()
        except ProtectedError:
            raise CouponError(CouponError.HAS_USAGE)
    logger.info(f"Coupon {coupon.code} deleted")


def usage_history(coupon):
    """Redemptions of ``coupon``, newest first, with user and company joined"""
    return (
        CouponUsage.objects.filter(coupon=coupon)
        .select_related('user', 'company', 'plan', 'payment')
        .order_by('-applied_at', '-id')
    )
