"""
Test suite for the Subscriptions module
Tests: plan catalogue, coupon preview, checkout with and without coupons
"""
from datetime import timedelta
from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone
from rest_framework import status

from backend.core.models import AuditLog
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.coupons.errors import CouponError
from backend.coupons.models import Coupon, CouponUsage
from backend.subscriptions.models import Plan, SubscriptionPayment, UserSubscription
from backend.subscriptions.services import checkout, SubscriptionError


class PlanCatalogueTests(TestCase):
    """Test plan seeding and listing"""

    def test_seed_plans_command_is_idempotent(self):
        out = StringIO()
        call_command('seed_plans', stdout=out)
        self.assertIn('3 created', out.getvalue())
        call_command('seed_plans', '--paid-price', '1499.00', stdout=out)
        self.assertIn('3 updated', out.getvalue())

        self.assertEqual(Plan.objects.count(), 3)
        self.assertEqual(Plan.objects.get(code='paid').price, Decimal('1499.00'))
        self.assertEqual(Plan.objects.get(code='trial').duration_days, 14)

    def test_plan_list_is_public(self):
        TestDataFactory.create_plans()
        response = AuthenticatedAPIClient().get('/api/v1/subscription/plans/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([p['code'] for p in response.data], ['free', 'trial', 'paid'])
        self.assertEqual(response.data[2]['price'], '999.00')

    def test_current_subscription(self):
        plans = TestDataFactory.create_plans()
        user = TestDataFactory.create_user()
        client = AuthenticatedAPIClient()
        client.authenticate_user(user)

        response = client.get('/api/v1/subscription/current/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        TestDataFactory.create_subscription(user, plans['trial'])
        response = client.get('/api/v1/subscription/current/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['plan']['code'], 'trial')
        self.assertTrue(response.data['is_current'])
        self.assertIsNotNone(response.data['expires_at'])


class CheckoutServiceTests(TestCase):
    """Test the checkout workflow"""

    def setUp(self):
        self.plans = TestDataFactory.create_plans()
        self.company = TestDataFactory.create_company()
        self.user = TestDataFactory.create_user(company=self.company)

    def test_checkout_without_coupon_leaves_payment_pending(self):
        payment = checkout(self.user, self.plans['paid'])
        self.assertEqual(payment.status, 'pending')
        self.assertEqual(payment.amount, Decimal('999.00'))
        self.assertEqual(payment.discount_amount, Decimal('0.00'))
        self.assertEqual(payment.company, self.company)
        self.assertTrue(payment.order_id.startswith('SUB-'))
        self.assertFalse(UserSubscription.objects.filter(user=self.user).exists())

    def test_checkout_with_percentage_coupon(self):
        coupon = TestDataFactory.create_coupon(code='SAVE20', value=Decimal('20'))
        payment = checkout(self.user, self.plans['paid'], coupon_code='save20')

        self.assertEqual(payment.original_amount, Decimal('999.00'))
        self.assertEqual(payment.discount_amount, Decimal('199.80'))
        self.assertEqual(payment.amount, Decimal('799.20'))
        self.assertEqual(payment.coupon_code, 'SAVE20')
        self.assertEqual(payment.status, 'pending')
        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 1)
        self.assertEqual(payment.coupon_usage.coupon, coupon)

    def test_free_plan_coupon_activates_subscription(self):
        TestDataFactory.create_coupon(code='FREEPAID', coupon_type=Coupon.TYPE_FREE_PLAN)
        payment = checkout(self.user, self.plans['paid'], coupon_code='FREEPAID')

        self.assertEqual(payment.amount, Decimal('0.00'))
        self.assertEqual(payment.status, 'success')
        subscription = UserSubscription.objects.get(user=self.user)
        self.assertEqual(subscription.plan, self.plans['paid'])
        self.assertTrue(subscription.is_current())

    def test_coupon_failure_rolls_back_payment(self):
        TestDataFactory.create_coupon(code='TRIALONLY', applicable_plans=['trial'])
        with self.assertRaises(CouponError) as ctx:
            checkout(self.user, self.plans['paid'], coupon_code='TRIALONLY')
        self.assertEqual(ctx.exception.code, CouponError.PLAN_NOT_ELIGIBLE)
        self.assertFalse(SubscriptionPayment.objects.exists())

        with self.assertRaises(CouponError) as ctx:
            checkout(self.user, self.plans['paid'], coupon_code='NOSUCHCODE')
        self.assertEqual(ctx.exception.code, CouponError.NOT_FOUND)
        self.assertFalse(SubscriptionPayment.objects.exists())

    def test_coupon_on_zero_price_plan_is_rejected(self):
        coupon = TestDataFactory.create_coupon(code='TRIAL50', applicable_plans=['trial'], usage_limit_total=1)
        with self.assertRaises(CouponError) as ctx:
            checkout(self.user, self.plans['trial'], coupon_code='TRIAL50')
        self.assertEqual(ctx.exception.code, CouponError.VALIDATION)

        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 0)
        self.assertFalse(CouponUsage.objects.exists())
        self.assertFalse(SubscriptionPayment.objects.exists())

    def test_checkout_same_current_plan_fails(self):
        TestDataFactory.create_subscription(self.user, self.plans['paid'])
        with self.assertRaises(SubscriptionError):
            checkout(self.user, self.plans['paid'])

    def test_checkout_after_expiry_is_allowed(self):
        subscription = TestDataFactory.create_subscription(self.user, self.plans['trial'])
        subscription.expires_at = timezone.now() - timedelta(days=1)
        subscription.save()

        payment = checkout(self.user, self.plans['trial'])
        self.assertEqual(payment.amount, Decimal('0.00'))
        self.assertEqual(payment.status, 'success')
        subscription.refresh_from_db()
        self.assertTrue(subscription.is_current())
        self.assertEqual(payment.metadata['previous_plan'], 'trial')


class CheckoutAPITests(TestCase):
    """Test the subscription purchase endpoints"""

    def setUp(self):
        self.plans = TestDataFactory.create_plans()
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_checkout_requires_authentication(self):
        self.client.logout()
        response = self.client.post('/api/v1/subscription/checkout/', {'plan': 'paid'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_preview_does_not_consume_coupon(self):
        coupon = TestDataFactory.create_coupon(code='FLAT300', coupon_type=Coupon.TYPE_FLAT,
                                               value=Decimal('300'), usage_limit_total=1)
        for _ in range(2):
            response = self.client.post(
                '/api/v1/subscription/coupons/preview/', {'code': 'flat300', 'plan': 'paid'}, format='json'
            )
            self.assertEqual(response.status_code, status.HTTP_200_OK)
            self.assertEqual(response.data['code'], 'FLAT300')
            self.assertEqual(response.data['originalAmount'], '999.00')
            self.assertEqual(response.data['discountAmount'], '300.00')
            self.assertEqual(response.data['finalAmount'], '699.00')

        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 0)
        self.assertFalse(CouponUsage.objects.exists())

    def test_preview_reports_coupon_errors(self):
        TestDataFactory.create_coupon(code='OLDCODE', expiry_date=timezone.now() - timedelta(days=1))
        response = self.client.post(
            '/api/v1/subscription/coupons/preview/', {'code': 'OLDCODE', 'plan': 'paid'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], CouponError.EXPIRED)

        response = self.client.post(
            '/api/v1/subscription/coupons/preview/', {'code': 'MISSING1', 'plan': 'paid'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], CouponError.NOT_FOUND)

    def test_preview_on_zero_price_plan(self):
        TestDataFactory.create_coupon(code='TRIAL50', applicable_plans=['trial'])
        response = self.client.post(
            '/api/v1/subscription/coupons/preview/', {'code': 'TRIAL50', 'plan': 'trial'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], CouponError.VALIDATION)

    def test_checkout_with_coupon(self):
        TestDataFactory.create_coupon(code='SAVE20', value=Decimal('20'))
        response = self.client.post(
            '/api/v1/subscription/checkout/', {'plan': 'paid', 'couponCode': 'SAVE20'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertFalse(response.data['activated'])
        self.assertEqual(response.data['payment']['amount'], '799.20')
        self.assertEqual(response.data['payment']['discount_amount'], '199.80')
        self.assertEqual(response.data['payment']['coupon_code'], 'SAVE20')

        self.assertTrue(AuditLog.objects.filter(action='subscription_checkout', user=self.user).exists())
        self.assertTrue(AuditLog.objects.filter(action='coupon_redeem', object_name='SAVE20').exists())

    def test_checkout_with_free_plan_coupon_activates(self):
        TestDataFactory.create_coupon(code='FREEPAID', coupon_type=Coupon.TYPE_FREE_PLAN)
        response = self.client.post(
            '/api/v1/subscription/checkout/', {'plan': 'paid', 'couponCode': 'FREEPAID'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['activated'])
        self.assertEqual(response.data['payment']['amount'], '0.00')
        self.assertEqual(response.data['payment']['status'], 'success')

        log = AuditLog.objects.get(action='subscription_activate', user=self.user)
        self.assertEqual(log.object_id, str(UserSubscription.objects.get(user=self.user).id))
        self.assertEqual(log.object_reference, response.data['payment']['order_id'])
        self.assertEqual(log.changes['plan'], 'paid')

    def test_pending_checkout_does_not_log_activation(self):
        self.client.post('/api/v1/subscription/checkout/', {'plan': 'paid'}, format='json')
        self.assertFalse(AuditLog.objects.filter(action='subscription_activate').exists())

    def test_checkout_exhausted_coupon(self):
        coupon = TestDataFactory.create_coupon(code='ONCEONLY', usage_limit_total=1)
        Coupon.objects.filter(pk=coupon.pk).update(used_count=1)

        response = self.client.post(
            '/api/v1/subscription/checkout/', {'plan': 'paid', 'couponCode': 'ONCEONLY'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], CouponError.LIMIT_REACHED)
        self.assertFalse(SubscriptionPayment.objects.exists())

    def test_checkout_per_user_coupon_twice(self):
        TestDataFactory.create_coupon(code='ONEEACH', usage_limit_per_user=True)
        first = self.client.post(
            '/api/v1/subscription/checkout/', {'plan': 'paid', 'couponCode': 'ONEEACH'}, format='json'
        )
        self.assertEqual(first.status_code, status.HTTP_201_CREATED)

        second = self.client.post(
            '/api/v1/subscription/checkout/', {'plan': 'paid', 'couponCode': 'ONEEACH'}, format='json'
        )
        self.assertEqual(second.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(second.data['code'], CouponError.ALREADY_USED)

    def test_checkout_unknown_plan(self):
        response = self.client.post('/api/v1/subscription/checkout/', {'plan': 'gold'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], CouponError.VALIDATION)

    def test_checkout_current_plan(self):
        TestDataFactory.create_subscription(self.user, self.plans['paid'])
        response = self.client.post('/api/v1/subscription/checkout/', {'plan': 'paid'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('error', response.data)
