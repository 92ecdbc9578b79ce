"""
Subscription purchase workflow.

Checkout creates a pending SubscriptionPayment at the plan price, redeems the
coupon against it when one is given and activates the plan straight away
when nothing is left to pay. Collecting a non-zero amount happens outside
this service (payment gateway).
"""
import logging
import uuid
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from backend.coupons.errors import CouponError
from backend.coupons.services import apply_coupon, find_coupon
from backend.coupons.validators import validate_coupon
from .models import Plan, UserSubscription, SubscriptionPayment

logger = logging.getLogger(__name__)

DEFAULT_PLANS = [
    {
        'code': 'free',
        'name': 'Free',
        'duration_days': None,
        'price': Decimal('0.00'),
        'max_warehouses': 2,
        'max_items': 5,
        'backup_access': False,
        'reports_access': False,
        'accounting_access': False,
        'advanced_inventory': False,
    },
    {
        'code': 'trial',
        'name': 'Trial',
        'duration_days': 14,
        'price': Decimal('0.00'),
        'max_warehouses': None,
        'max_items': None,
        'backup_access': False,
        'reports_access': True,
        'accounting_access': True,
        'advanced_inventory': True,
    },
    {
        'code': 'paid',
        'name': 'Paid',
        'duration_days': None,
        'price': Decimal('999.00'),
        'max_warehouses': None,
        'max_items': None,
        'backup_access': True,
        'reports_access': True,
        'accounting_access': True,
        'advanced_inventory': True,
    },
]


class SubscriptionError(Exception):
    """Checkout request that cannot be honoured (not a coupon problem)"""


def seed_plans(overrides=None):
    """Upsert the default plan catalogue; returns (created, updated) counts"""
    overrides = overrides or {}
    created_count = updated_count = 0
    for plan_data in DEFAULT_PLANS:
        defaults = dict(plan_data, is_active=True)
        code = defaults.pop('code')
        defaults.update(overrides.get(code, {}))
        _, created = Plan.objects.update_or_create(code=code, defaults=defaults)
        if created:
            created_count += 1
        else:
            updated_count += 1
    return created_count, updated_count


def generate_order_id():
    order_id = f"SUB-{timezone.now().strftime('%Y%m%d')}-{uuid.uuid4().hex[:8].upper()}"
    while SubscriptionPayment.objects.filter(order_id=order_id).exists():
        order_id = f"SUB-{timezone.now().strftime('%Y%m%d')}-{uuid.uuid4().hex[:8].upper()}"
    return order_id


def ensure_discountable(plan):
    """Coupons only apply to plans that cost something"""
    if plan.price <= 0:
        raise CouponError(CouponError.VALIDATION, message=f"Coupons cannot be applied to the {plan.name} plan")


def preview_coupon(code, plan, user, now=None):
    """Discount the coupon would give on ``plan``; consumes nothing"""
    ensure_discountable(plan)
    coupon = find_coupon(code)
    return coupon, validate_coupon(coupon, plan.code, user, plan.price, now=now)


def activate_subscription(payment, now=None):
    """Mark ``payment`` successful and move its user onto the purchased plan"""
    now = now or timezone.now()
    subscription = UserSubscription.objects.select_for_update().filter(user=payment.user).first()
    if subscription is None:
        subscription = UserSubscription(user=payment.user)
    subscription.switch_plan(payment.plan, now=now)
    subscription.save()

    payment.status = 'success'
    payment.save(update_fields=['status', 'updated_at'])
    logger.info(f"User {payment.user_id} moved to plan {payment.plan.code} by payment {payment.order_id}")
    return subscription


def checkout(user, plan, coupon_code=None, now=None):
    """
    Start a purchase of ``plan`` for ``user``.

    Raises SubscriptionError for plans the user already holds and CouponError
    when the coupon cannot be redeemed; either way nothing is persisted.
    """
    now = now or timezone.now()
    current = UserSubscription.objects.select_related('plan').filter(user=user).first()
    if current and current.plan_id == plan.id and current.is_current(now):
        raise SubscriptionError(f"You already have the {plan.name} plan")
    if coupon_code:
        ensure_discountable(plan)

    with transaction.atomic():
        payment = SubscriptionPayment.objects.create(
            order_id=generate_order_id(),
            user=user,
            company=user.company,
            plan=plan,
            original_amount=plan.price,
            amount=plan.price,
            currency=getattr(settings, 'SUBSCRIPTION_CURRENCY', 'INR'),
            metadata={'previous_plan': current.plan.code if current else None},
        )
        if coupon_code:
            apply_coupon(find_coupon(coupon_code), payment, now=now)
        if payment.amount == 0:
            activate_subscription(payment, now=now)

    logger.info(
        f"Checkout {payment.order_id} for user {user.id} on plan {plan.code}: "
        f"amount {payment.amount} ({payment.status})"
    )
    return payment
