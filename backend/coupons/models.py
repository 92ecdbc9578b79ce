from decimal import Decimal

from django.core.validators import RegexValidator
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from backend.core.models import User, Company
from backend.subscriptions.models import Plan, SubscriptionPayment

coupon_code_validator = RegexValidator(
    r'^[A-Z0-9]{4,20}$',
    'Code must be 4-20 alphanumeric characters',
)


class Coupon(models.Model):
    """Discount rule applicable to subscription plan purchases"""
    TYPE_PERCENTAGE = 'percentage'
    TYPE_FLAT = 'flat'
    TYPE_FREE_PLAN = 'free_plan'

    TYPE_CHOICES = [
        (TYPE_PERCENTAGE, 'Percentage'),
        (TYPE_FLAT, 'Flat Amount'),
        (TYPE_FREE_PLAN, 'Free Plan'),
    ]

    code = models.CharField(max_length=20, unique=True, validators=[coupon_code_validator])
    type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    value = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    applicable_plans = models.JSONField(default=list, help_text='Plan codes this coupon applies to')
    expiry_date = models.DateTimeField(null=True, blank=True, help_text='Null means the coupon never expires')
    usage_limit_total = models.PositiveIntegerField(null=True, blank=True, help_text='Null means unlimited')
    usage_limit_per_user = models.BooleanField(default=False, help_text='Limit each user to a single redemption')
    used_count = models.PositiveIntegerField(default=0, editable=False)
    is_active = models.BooleanField(default=True)
    description = models.TextField(blank=True)
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='created_coupons')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.code

    def save(self, *args, **kwargs):
        self.code = (self.code or '').strip().upper()
        if self.type == self.TYPE_FREE_PLAN:
            self.value = Decimal('0.00')
        super().save(*args, **kwargs)

    @property
    def has_global_limit(self):
        return self.usage_limit_total is not None and not self.usage_limit_per_user

    def is_expired(self, now=None):
        if self.expiry_date is None:
            return False
        return self.expiry_date <= (now or timezone.now())

    class Meta:
        db_table = 'coupons'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['is_active'], name='idx_coupon_active'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(usage_limit_total__isnull=True)
                    | Q(usage_limit_per_user=True)
                    | Q(used_count__lte=F('usage_limit_total'))
                ),
                name='coupon_used_count_within_limit',
            ),
        ]


class CouponUsage(models.Model):
    """One successful redemption; rows are never modified once written"""
    coupon = models.ForeignKey(Coupon, on_delete=models.PROTECT, related_name='usages')
    coupon_code = models.CharField(max_length=20)
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name='coupon_usages')
    company = models.ForeignKey(Company, on_delete=models.SET_NULL, null=True, blank=True, related_name='coupon_usages')
    plan = models.ForeignKey(Plan, on_delete=models.PROTECT, related_name='coupon_usages')
    payment = models.OneToOneField(SubscriptionPayment, on_delete=models.SET_NULL, null=True, blank=True, related_name='coupon_usage')
    original_amount = models.DecimalField(max_digits=10, decimal_places=2)
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2)
    final_amount = models.DecimalField(max_digits=10, decimal_places=2)
    applied_at = models.DateTimeField(default=timezone.now)

    def __str__(self):
        return f"{self.coupon_code} by {self.user_id} at {self.applied_at}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError('Coupon usage records are immutable')
        super().save(*args, **kwargs)

    class Meta:
        db_table = 'coupon_usages'
        ordering = ['-applied_at', '-id']
        indexes = [
            models.Index(fields=['coupon', 'user'], name='idx_cpnusage_coupon_user'),
            models.Index(fields=['-applied_at'], name='idx_cpnusage_applied'),
        ]
