"""
Test utilities and factories for creating test data
"""
from decimal import Decimal
import random
import string

from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from backend.core.models import Company
from backend.coupons.models import Coupon
from backend.subscriptions.models import Plan, SubscriptionPayment, UserSubscription
from backend.subscriptions.services import generate_order_id, seed_plans

User = get_user_model()


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=10):
        """Generate a random string"""
        return ''.join(random.choices(string.ascii_letters + string.digits, k=length))

    @staticmethod
    def create_company(name=None):
        """Create a test company"""
        if not name:
            name = f'Company_{TestDataFactory.random_string(6)}'
        return Company.objects.create(name=name, email=f'{name.lower()}@test.com')

    @staticmethod
    def create_user(username=None, email=None, password='testpass123', is_staff=False,
                    is_superuser=False, company=None):
        """Create a test user"""
        if not username:
            username = f'testuser_{TestDataFactory.random_string(6)}'
        if not email:
            email = f'{username}@test.com'
        return User.objects.create_user(
            username=username,
            email=email,
            password=password,
            is_staff=is_staff,
            is_superuser=is_superuser,
            company=company,
        )

    @staticmethod
    def create_admin(username=None):
        """Create a staff user allowed to manage coupons"""
        return TestDataFactory.create_user(username=username, is_staff=True, is_superuser=True)

    @staticmethod
    def create_plans():
        """Create the default plan catalogue and return it keyed by code"""
        seed_plans()
        return {plan.code: plan for plan in Plan.objects.all()}

    @staticmethod
    def create_coupon(code=None, coupon_type=Coupon.TYPE_PERCENTAGE, value=Decimal('20.00'),
                      applicable_plans=None, expiry_date=None, usage_limit_total=None,
                      usage_limit_per_user=False, is_active=True, created_by=None):
        """Create a test coupon"""
        if not code:
            code = f'CPN{TestDataFactory.random_string(6).upper()}'
        return Coupon.objects.create(
            code=code,
            type=coupon_type,
            value=value,
            applicable_plans=applicable_plans if applicable_plans is not None else ['paid'],
            expiry_date=expiry_date,
            usage_limit_total=usage_limit_total,
            usage_limit_per_user=usage_limit_per_user,
            is_active=is_active,
            created_by=created_by,
        )

    @staticmethod
    def create_payment(user, plan, amount=None):
        """Create a pending subscription payment at the plan price"""
        amount = plan.price if amount is None else amount
        return SubscriptionPayment.objects.create(
            order_id=generate_order_id(),
            user=user,
            company=user.company,
            plan=plan,
            original_amount=amount,
            amount=amount,
        )

    @staticmethod
    def create_subscription(user, plan):
        """Put a user on a plan"""
        subscription = UserSubscription(user=user)
        subscription.switch_plan(plan)
        subscription.save()
        return subscription


class AuthenticatedAPIClient(APIClient):
    """APIClient with authentication helper"""

    def authenticate_user(self, user):
        """Authenticate the client with a user"""
        refresh = RefreshToken.for_user(user)
        self.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
        return self

    def logout(self):
        """Remove authentication"""
        self.credentials()
