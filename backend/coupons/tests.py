"""
Test suite for the Coupons module
Tests: discount computation, validation order, atomic redemption, usage limits and the admin API
"""
import threading
from datetime import timedelta
from decimal import Decimal

from django.db import connection
from django.test import TestCase, TransactionTestCase
from django.utils import timezone
from rest_framework import status

from backend.core.models import AuditLog
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.coupons.errors import CouponError
from backend.coupons.models import Coupon, CouponUsage
from backend.coupons.services import apply_coupon, delete_coupon, find_coupon, reserve_redemption, toggle_coupon
from backend.coupons.validators import compute_discount, validate_coupon


class CouponDiscountTests(TestCase):
    """Test discount computation per coupon type"""

    def test_percentage_discount(self):
        coupon = TestDataFactory.create_coupon(coupon_type=Coupon.TYPE_PERCENTAGE, value=Decimal('20'))
        self.assertEqual(compute_discount(coupon, Decimal('1000')), Decimal('200.00'))

    def test_percentage_discount_rounds_half_up(self):
        coupon = TestDataFactory.create_coupon(coupon_type=Coupon.TYPE_PERCENTAGE, value=Decimal('12.50'))
        self.assertEqual(compute_discount(coupon, Decimal('999')), Decimal('124.88'))

    def test_flat_discount_is_clamped_to_amount(self):
        coupon = TestDataFactory.create_coupon(coupon_type=Coupon.TYPE_FLAT, value=Decimal('500'))
        self.assertEqual(compute_discount(coupon, Decimal('300')), Decimal('300.00'))
        self.assertEqual(compute_discount(coupon, Decimal('800')), Decimal('500.00'))

    def test_free_plan_discounts_whole_amount(self):
        coupon = TestDataFactory.create_coupon(coupon_type=Coupon.TYPE_FREE_PLAN, value=Decimal('50'))
        self.assertEqual(coupon.value, Decimal('0.00'))
        for amount in (Decimal('0'), Decimal('1'), Decimal('999'), Decimal('123456.78')):
            self.assertEqual(compute_discount(coupon, amount), amount.quantize(Decimal('0.01')))

    def test_unknown_type_is_rejected(self):
        coupon = TestDataFactory.create_coupon()
        coupon.type = 'bogus'
        with self.assertRaises(ValueError):
            compute_discount(coupon, Decimal('100'))

    def test_code_is_stored_upper_case(self):
        coupon = TestDataFactory.create_coupon(code='save20')
        self.assertEqual(coupon.code, 'SAVE20')
        self.assertEqual(find_coupon(' Save20 ').pk, coupon.pk)


class CouponValidatorTests(TestCase):
    """Test the ordered eligibility checks"""

    def setUp(self):
        self.plans = TestDataFactory.create_plans()
        self.user = TestDataFactory.create_user()

    def assertCouponError(self, code, coupon, plan_code='paid', user=None, amount=Decimal('999')):
        with self.assertRaises(CouponError) as ctx:
            validate_coupon(coupon, plan_code, user or self.user, amount)
        self.assertEqual(ctx.exception.code, code)

    def test_valid_percentage_coupon(self):
        coupon = TestDataFactory.create_coupon(value=Decimal('20'))
        result = validate_coupon(coupon, 'paid', self.user, Decimal('1000'))
        self.assertEqual(result.original_amount, Decimal('1000.00'))
        self.assertEqual(result.discount_amount, Decimal('200.00'))
        self.assertEqual(result.final_amount, Decimal('800.00'))

    def test_flat_coupon_final_amount_zero(self):
        coupon = TestDataFactory.create_coupon(coupon_type=Coupon.TYPE_FLAT, value=Decimal('500'))
        result = validate_coupon(coupon, 'paid', self.user, Decimal('300'))
        self.assertEqual(result.discount_amount, Decimal('300.00'))
        self.assertEqual(result.final_amount, Decimal('0.00'))

    def test_missing_coupon(self):
        self.assertCouponError(CouponError.NOT_FOUND, None)

    def test_inactive_coupon(self):
        coupon = TestDataFactory.create_coupon(is_active=False)
        self.assertCouponError(CouponError.INACTIVE, coupon)

    def test_expired_coupon_wins_over_later_checks(self):
        coupon = TestDataFactory.create_coupon(
            expiry_date=timezone.now() - timedelta(minutes=1),
            applicable_plans=['trial'],
            usage_limit_total=1,
        )
        Coupon.objects.filter(pk=coupon.pk).update(used_count=1)
        coupon.refresh_from_db()
        self.assertCouponError(CouponError.EXPIRED, coupon)

    def test_future_expiry_is_valid(self):
        coupon = TestDataFactory.create_coupon(expiry_date=timezone.now() + timedelta(days=1))
        validate_coupon(coupon, 'paid', self.user, Decimal('999'))

    def test_plan_not_eligible(self):
        coupon = TestDataFactory.create_coupon(applicable_plans=['trial'])
        self.assertCouponError(CouponError.PLAN_NOT_ELIGIBLE, coupon, plan_code='paid')

    def test_global_limit_reached(self):
        coupon = TestDataFactory.create_coupon(usage_limit_total=2)
        Coupon.objects.filter(pk=coupon.pk).update(used_count=2)
        coupon.refresh_from_db()
        self.assertCouponError(CouponError.LIMIT_REACHED, coupon)

    def test_per_user_coupon_ignores_global_count(self):
        coupon = TestDataFactory.create_coupon(usage_limit_total=1, usage_limit_per_user=True)
        Coupon.objects.filter(pk=coupon.pk).update(used_count=5)
        coupon.refresh_from_db()
        result = validate_coupon(coupon, 'paid', self.user, Decimal('999'))
        self.assertEqual(result.final_amount, Decimal('799.20'))

    def test_per_user_coupon_already_used(self):
        coupon = TestDataFactory.create_coupon(usage_limit_per_user=True)
        payment = TestDataFactory.create_payment(self.user, self.plans['paid'])
        apply_coupon(coupon, payment)
        self.assertCouponError(CouponError.ALREADY_USED, coupon)

        other_user = TestDataFactory.create_user()
        validate_coupon(coupon, 'paid', other_user, Decimal('999'))

    def test_validation_has_no_side_effects(self):
        coupon = TestDataFactory.create_coupon(usage_limit_total=1)
        for _ in range(3):
            validate_coupon(coupon, 'paid', self.user, Decimal('999'))
        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 0)
        self.assertFalse(CouponUsage.objects.exists())


class CouponApplierTests(TestCase):
    """Test atomic redemption"""

    def setUp(self):
        self.plans = TestDataFactory.create_plans()
        self.company = TestDataFactory.create_company()
        self.user = TestDataFactory.create_user(company=self.company)

    def test_apply_records_usage_and_discounts_payment(self):
        coupon = TestDataFactory.create_coupon(value=Decimal('20'))
        payment = TestDataFactory.create_payment(self.user, self.plans['paid'], amount=Decimal('1000'))

        applied = apply_coupon(coupon, payment)

        self.assertEqual(applied.discount.final_amount, Decimal('800.00'))
        self.assertEqual(coupon.used_count, 1)
        payment.refresh_from_db()
        self.assertEqual(payment.amount, Decimal('800.00'))
        self.assertEqual(payment.discount_amount, Decimal('200.00'))
        self.assertEqual(payment.coupon_code, coupon.code)

        usage = CouponUsage.objects.get(coupon=coupon)
        self.assertEqual(usage.user, self.user)
        self.assertEqual(usage.company, self.company)
        self.assertEqual(usage.plan, self.plans['paid'])
        self.assertEqual(usage.payment, payment)
        self.assertEqual(usage.original_amount, Decimal('1000.00'))
        self.assertEqual(usage.final_amount, Decimal('800.00'))

    def test_total_limit_allows_exactly_n_redemptions(self):
        coupon = TestDataFactory.create_coupon(usage_limit_total=3)
        for _ in range(3):
            payment = TestDataFactory.create_payment(TestDataFactory.create_user(), self.plans['paid'])
            apply_coupon(coupon, payment)

        extra_payment = TestDataFactory.create_payment(self.user, self.plans['paid'])
        with self.assertRaises(CouponError) as ctx:
            apply_coupon(coupon, extra_payment)
        self.assertEqual(ctx.exception.code, CouponError.LIMIT_REACHED)

        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 3)
        self.assertEqual(CouponUsage.objects.filter(coupon=coupon).count(), 3)
        extra_payment.refresh_from_db()
        self.assertEqual(extra_payment.amount, self.plans['paid'].price)
        self.assertEqual(extra_payment.coupon_code, '')

    def test_stale_coupon_instance_cannot_overshoot_limit(self):
        coupon = TestDataFactory.create_coupon(usage_limit_total=1)
        stale = Coupon.objects.get(pk=coupon.pk)

        apply_coupon(coupon, TestDataFactory.create_payment(self.user, self.plans['paid']))
        self.assertEqual(stale.used_count, 0)

        other = TestDataFactory.create_user()
        with self.assertRaises(CouponError) as ctx:
            apply_coupon(stale, TestDataFactory.create_payment(other, self.plans['paid']))
        self.assertEqual(ctx.exception.code, CouponError.LIMIT_REACHED)
        self.assertEqual(Coupon.objects.get(pk=coupon.pk).used_count, 1)

    def test_reserve_redemption_is_conditional(self):
        capped = TestDataFactory.create_coupon(usage_limit_total=1)
        self.assertTrue(reserve_redemption(capped.pk))
        self.assertFalse(reserve_redemption(capped.pk))
        capped.refresh_from_db()
        self.assertEqual(capped.used_count, 1)

        unlimited = TestDataFactory.create_coupon()
        for _ in range(5):
            self.assertTrue(reserve_redemption(unlimited.pk))
        unlimited.refresh_from_db()
        self.assertEqual(unlimited.used_count, 5)

    def test_per_user_coupon_second_attempt_fails(self):
        coupon = TestDataFactory.create_coupon(usage_limit_per_user=True, usage_limit_total=1)
        apply_coupon(coupon, TestDataFactory.create_payment(self.user, self.plans['paid']))

        with self.assertRaises(CouponError) as ctx:
            apply_coupon(coupon, TestDataFactory.create_payment(self.user, self.plans['paid']))
        self.assertEqual(ctx.exception.code, CouponError.ALREADY_USED)

        other = TestDataFactory.create_user()
        apply_coupon(coupon, TestDataFactory.create_payment(other, self.plans['paid']))
        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 2)

    def test_failed_redemption_writes_nothing(self):
        coupon = TestDataFactory.create_coupon(applicable_plans=['trial'])
        payment = TestDataFactory.create_payment(self.user, self.plans['paid'])

        with self.assertRaises(CouponError) as ctx:
            apply_coupon(coupon, payment)
        self.assertEqual(ctx.exception.code, CouponError.PLAN_NOT_ELIGIBLE)

        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 0)
        self.assertFalse(CouponUsage.objects.exists())

    def test_usage_rows_are_immutable(self):
        coupon = TestDataFactory.create_coupon()
        applied = apply_coupon(coupon, TestDataFactory.create_payment(self.user, self.plans['paid']))
        applied.usage.final_amount = Decimal('1.00')
        with self.assertRaises(ValueError):
            applied.usage.save()

    def test_toggle_and_delete(self):
        coupon = TestDataFactory.create_coupon()
        self.assertFalse(toggle_coupon(coupon).is_active)
        self.assertTrue(toggle_coupon(coupon).is_active)

        delete_coupon(coupon)
        self.assertFalse(Coupon.objects.filter(pk=coupon.pk).exists())

    def test_delete_redeemed_coupon_fails(self):
        coupon = TestDataFactory.create_coupon()
        apply_coupon(coupon, TestDataFactory.create_payment(self.user, self.plans['paid']))

        with self.assertRaises(CouponError) as ctx:
            delete_coupon(coupon)
        self.assertEqual(ctx.exception.code, CouponError.HAS_USAGE)
        self.assertTrue(Coupon.objects.filter(pk=coupon.pk).exists())


class ConcurrentRedemptionTests(TransactionTestCase):
    """Parallel redemptions from separate database connections"""

    def test_parallel_redemptions_respect_total(self):
        plans = TestDataFactory.create_plans()
        coupon = TestDataFactory.create_coupon(usage_limit_total=2)
        payments = [
            TestDataFactory.create_payment(TestDataFactory.create_user(), plans['paid'])
            for _ in range(6)
        ]
        outcomes = []
        outcomes_lock = threading.Lock()

        def redeem(payment):
            try:
                apply_coupon(Coupon.objects.get(pk=coupon.pk), payment)
                outcome = 'ok'
            except CouponError as e:
                outcome = e.code
            except Exception as e:
                outcome = f'{type(e).__name__}: {e}'
            finally:
                connection.close()
            with outcomes_lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=redeem, args=(payment,)) for payment in payments]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(outcomes), sorted(['ok'] * 2 + [CouponError.LIMIT_REACHED] * 4), outcomes)
        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 2)
        self.assertEqual(CouponUsage.objects.filter(coupon=coupon).count(), 2)


class CouponAdminAPITests(TestCase):
    """Test the admin coupon endpoints"""

    def setUp(self):
        self.plans = TestDataFactory.create_plans()
        self.admin = TestDataFactory.create_admin()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def coupon_payload(self, **overrides):
        data = {
            'code': 'welcome20',
            'type': 'percentage',
            'value': 20,
            'applicablePlans': ['paid'],
            'usageLimit': {'total': 100, 'perUser': False},
            'description': 'Welcome offer',
        }
        data.update(overrides)
        return data

    def test_non_admin_is_forbidden(self):
        client = AuthenticatedAPIClient()
        client.authenticate_user(TestDataFactory.create_user())
        response = client.get('/api/v1/admin/coupons/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_anonymous_is_rejected(self):
        self.client.logout()
        response = self.client.get('/api/v1/admin/coupons/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_create_coupon(self):
        response = self.client.post('/api/v1/admin/coupons/', self.coupon_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['code'], 'WELCOME20')
        self.assertEqual(response.data['type'], 'percentage')
        self.assertEqual(response.data['value'], '20.00')
        self.assertEqual(response.data['applicablePlans'], ['paid'])
        self.assertEqual(response.data['usageLimit'], {'total': 100, 'perUser': False})
        self.assertEqual(response.data['usedCount'], 0)
        self.assertTrue(response.data['isActive'])
        self.assertEqual(response.data['createdBy'], self.admin.username)

        coupon = Coupon.objects.get(code='WELCOME20')
        self.assertEqual(coupon.created_by, self.admin)
        self.assertTrue(AuditLog.objects.filter(action='create', model_name='Coupon', object_id=str(coupon.id)).exists())

    def test_create_without_usage_limit_is_unlimited(self):
        payload = self.coupon_payload()
        payload.pop('usageLimit')
        response = self.client.post('/api/v1/admin/coupons/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['usageLimit'], {'total': None, 'perUser': False})

    def test_create_duplicate_code_is_case_insensitive(self):
        TestDataFactory.create_coupon(code='WELCOME20')
        response = self.client.post('/api/v1/admin/coupons/', self.coupon_payload(code='Welcome20'), format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], CouponError.VALIDATION)
        self.assertIn('code', response.data['details'])

    def test_create_rejects_malformed_code(self):
        for code in ('AB1', 'WITH-DASH', 'A' * 21):
            response = self.client.post('/api/v1/admin/coupons/', self.coupon_payload(code=code), format='json')
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, code)
            self.assertEqual(response.data['code'], CouponError.VALIDATION)

    def test_create_rejects_bad_values(self):
        bad_payloads = [
            self.coupon_payload(value=150),
            self.coupon_payload(value=0),
            self.coupon_payload(type='flat', value=None),
            self.coupon_payload(type='bogus'),
            self.coupon_payload(applicablePlans=[]),
            self.coupon_payload(applicablePlans=['enterprise']),
            self.coupon_payload(usageLimit={'total': 0}),
            self.coupon_payload(expiryDate=(timezone.now() - timedelta(days=1)).isoformat()),
        ]
        for payload in bad_payloads:
            response = self.client.post('/api/v1/admin/coupons/', payload, format='json')
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, payload)
            self.assertEqual(response.data['code'], CouponError.VALIDATION)
        self.assertFalse(Coupon.objects.exists())

    def test_create_free_plan_forces_zero_value(self):
        payload = self.coupon_payload(type='free_plan', value=75, applicablePlans=['paid', 'paid', 'trial'])
        response = self.client.post('/api/v1/admin/coupons/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['value'], '0.00')
        self.assertEqual(response.data['applicablePlans'], ['paid', 'trial'])

    def test_list_coupons_newest_first_with_filters(self):
        first = TestDataFactory.create_coupon(code='FIRST01')
        second = TestDataFactory.create_coupon(code='SECOND02', is_active=False)

        response = self.client.get('/api/v1/admin/coupons/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([c['code'] for c in response.data], [second.code, first.code])

        response = self.client.get('/api/v1/admin/coupons/?is_active=false')
        self.assertEqual([c['code'] for c in response.data], [second.code])

        response = self.client.get('/api/v1/admin/coupons/?search=first')
        self.assertEqual([c['code'] for c in response.data], [first.code])

    def test_get_coupon_detail_and_missing(self):
        coupon = TestDataFactory.create_coupon()
        response = self.client.get(f'/api/v1/admin/coupons/{coupon.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['code'], coupon.code)

        response = self.client.get('/api/v1/admin/coupons/999999/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], CouponError.NOT_FOUND)

    def test_update_coupon(self):
        coupon = TestDataFactory.create_coupon(value=Decimal('20'))
        response = self.client.patch(
            f'/api/v1/admin/coupons/{coupon.id}/',
            {'value': 35, 'description': 'Festive', 'usageLimit': {'total': 10}},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['value'], '35.00')
        self.assertEqual(response.data['description'], 'Festive')
        self.assertEqual(response.data['usageLimit'], {'total': 10, 'perUser': False})

    def test_put_without_per_user_keeps_per_user_mode(self):
        coupon = TestDataFactory.create_coupon(usage_limit_per_user=True)
        response = self.client.put(
            f'/api/v1/admin/coupons/{coupon.id}/', {'usageLimit': {'total': 5}}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['usageLimit'], {'total': 5, 'perUser': True})
        coupon.refresh_from_db()
        self.assertTrue(coupon.usage_limit_per_user)
        self.assertEqual(coupon.usage_limit_total, 5)

        response = self.client.put(
            f'/api/v1/admin/coupons/{coupon.id}/', {'usageLimit': {'perUser': False}}, format='json'
        )
        self.assertEqual(response.data['usageLimit'], {'total': 5, 'perUser': False})

    def test_update_cannot_drop_limit_below_used_count(self):
        coupon = TestDataFactory.create_coupon(usage_limit_total=5)
        Coupon.objects.filter(pk=coupon.pk).update(used_count=3)
        response = self.client.patch(
            f'/api/v1/admin/coupons/{coupon.id}/', {'usageLimit': {'total': 2}}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], CouponError.VALIDATION)

    def test_toggle_coupon(self):
        coupon = TestDataFactory.create_coupon()
        response = self.client.patch(f'/api/v1/admin/coupons/{coupon.id}/toggle/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['coupon']['isActive'])
        self.assertIn('deactivated', response.data['message'])

        response = self.client.patch(f'/api/v1/admin/coupons/{coupon.id}/toggle/')
        self.assertTrue(response.data['coupon']['isActive'])

    def test_delete_unused_coupon(self):
        coupon = TestDataFactory.create_coupon()
        response = self.client.delete(f'/api/v1/admin/coupons/{coupon.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Coupon.objects.filter(pk=coupon.pk).exists())

    def test_delete_used_coupon_fails(self):
        coupon = TestDataFactory.create_coupon()
        apply_coupon(coupon, TestDataFactory.create_payment(TestDataFactory.create_user(), self.plans['paid']))

        response = self.client.delete(f'/api/v1/admin/coupons/{coupon.id}/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], CouponError.HAS_USAGE)
        self.assertTrue(Coupon.objects.filter(pk=coupon.pk).exists())

    def test_usage_history(self):
        coupon = TestDataFactory.create_coupon(value=Decimal('10'))
        company = TestDataFactory.create_company(name='Acme Traders')
        buyer = TestDataFactory.create_user(company=company)
        buyer.first_name, buyer.last_name = 'Asha', 'Rao'
        buyer.save()
        apply_coupon(coupon, TestDataFactory.create_payment(buyer, self.plans['paid']))
        apply_coupon(coupon, TestDataFactory.create_payment(TestDataFactory.create_user(), self.plans['paid']))

        response = self.client.get(f'/api/v1/admin/coupons/{coupon.id}/usage/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['coupon']['usedCount'], 2)
        self.assertEqual(len(response.data['usageHistory']), 2)

        oldest = response.data['usageHistory'][-1]
        self.assertEqual(oldest['userName'], 'Asha Rao')
        self.assertEqual(oldest['userEmail'], buyer.email)
        self.assertEqual(oldest['companyName'], 'Acme Traders')
        self.assertEqual(oldest['plan'], 'paid')
        self.assertEqual(oldest['discountAmount'], '99.90')
        self.assertEqual(oldest['finalAmount'], '899.10')
        self.assertIsNone(response.data['usageHistory'][0]['companyName'])
