from datetime import timedelta
from decimal import Decimal

from django.db import models
from django.utils import timezone

from backend.core.models import User, Company


class Plan(models.Model):
    """Subscription tier sold to companies"""
    PLAN_CODE_CHOICES = [
        ('free', 'Free'),
        ('trial', 'Trial'),
        ('paid', 'Paid'),
    ]

    code = models.CharField(max_length=20, choices=PLAN_CODE_CHOICES, unique=True)
    name = models.CharField(max_length=100)
    duration_days = models.PositiveIntegerField(null=True, blank=True, help_text='Null means the plan never expires')
    price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    # Feature limits; null means unlimited
    max_warehouses = models.PositiveIntegerField(null=True, blank=True)
    max_items = models.PositiveIntegerField(null=True, blank=True)
    backup_access = models.BooleanField(default=False)
    reports_access = models.BooleanField(default=False)
    accounting_access = models.BooleanField(default=False)
    advanced_inventory = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    class Meta:
        db_table = 'plans'
        ordering = ['price', 'code']


class UserSubscription(models.Model):
    """Current plan of a user (one row per user)"""
    STATUS_CHOICES = [
        ('active', 'Active'),
        ('expired', 'Expired'),
        ('cancelled', 'Cancelled'),
    ]

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='subscription')
    plan = models.ForeignKey(Plan, on_delete=models.PROTECT, related_name='subscriptions')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='active')
    started_at = models.DateTimeField(default=timezone.now)
    expires_at = models.DateTimeField(null=True, blank=True, help_text='Null means no expiry')
    updated_by_admin = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.user} - {self.plan.code}"

    def is_current(self, now=None):
        """Active status and not past the expiry instant"""
        if self.status != 'active':
            return False
        now = now or timezone.now()
        return self.expires_at is None or self.expires_at > now

    def switch_plan(self, plan, now=None):
        """Move the subscription onto ``plan`` starting at ``now``"""
        now = now or timezone.now()
        self.plan = plan
        self.status = 'active'
        self.started_at = now
        self.expires_at = now + timedelta(days=plan.duration_days) if plan.duration_days else None
        self.updated_by_admin = False

    class Meta:
        db_table = 'user_subscriptions'
        indexes = [
            models.Index(fields=['status'], name='idx_usersub_status'),
        ]


class SubscriptionPayment(models.Model):
    """Plan purchase attempt; amount is the final price after any coupon"""
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('success', 'Success'),
        ('failed', 'Failed'),
    ]

    order_id = models.CharField(max_length=100, unique=True)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='subscription_payments')
    company = models.ForeignKey(Company, on_delete=models.SET_NULL, null=True, blank=True, related_name='subscription_payments')
    plan = models.ForeignKey(Plan, on_delete=models.PROTECT, related_name='payments')
    original_amount = models.DecimalField(max_digits=10, decimal_places=2)
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=10, default='INR')
    coupon_code = models.CharField(max_length=20, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.order_id

    class Meta:
        db_table = 'subscription_payments'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'status'], name='idx_subpay_user_status'),
        ]
