"""
Test suite for the Core module
Tests: authentication, current user summary, audit logging
"""
from django.test import TestCase, RequestFactory
from rest_framework import status

from backend.core.models import AuditLog
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.core.utils import create_audit_log, get_client_ip


class AuthTests(TestCase):
    """Test login and the current user endpoint"""

    def setUp(self):
        self.plans = TestDataFactory.create_plans()
        self.company = TestDataFactory.create_company(name='Acme')
        self.user = TestDataFactory.create_user(username='shopowner', company=self.company)
        self.client = AuthenticatedAPIClient()

    def test_login_returns_token_pair(self):
        response = self.client.post(
            '/api/v1/auth/login/', {'username': 'shopowner', 'password': 'testpass123'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)
        self.assertIn('refresh', response.data)

        refreshed = self.client.post('/api/v1/auth/refresh/', {'refresh': response.data['refresh']}, format='json')
        self.assertEqual(refreshed.status_code, status.HTTP_200_OK)
        self.assertIn('access', refreshed.data)

    def test_login_with_wrong_password(self):
        response = self.client.post(
            '/api/v1/auth/login/', {'username': 'shopowner', 'password': 'wrong'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_without_subscription(self):
        self.client.authenticate_user(self.user)
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['username'], 'shopowner')
        self.assertIsNone(response.data['subscription'])
        self.assertFalse(response.data['is_admin'])

    def test_me_with_subscription(self):
        TestDataFactory.create_subscription(self.user, self.plans['paid'])
        self.client.authenticate_user(self.user)
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.data['subscription']['plan'], 'paid')
        self.assertTrue(response.data['subscription']['is_active'])


class AuditLogTests(TestCase):
    """Test audit log helpers and listing"""

    def setUp(self):
        self.admin = TestDataFactory.create_admin()
        self.client = AuthenticatedAPIClient()

    def test_create_audit_log_from_request(self):
        request = RequestFactory().post('/', HTTP_X_FORWARDED_FOR='10.0.0.7, 172.16.0.1')
        request.user = self.admin
        self.assertEqual(get_client_ip(request), '10.0.0.7')

        log = create_audit_log(
            request=request,
            action='coupon_toggle',
            model_name='Coupon',
            object_id=42,
            object_name='SAVE20',
            changes={'is_active': False},
        )
        self.assertEqual(log.user, self.admin)
        self.assertEqual(log.object_id, '42')
        self.assertEqual(log.ip_address, '10.0.0.7')

    def test_create_audit_log_skips_incomplete_entries(self):
        self.assertIsNone(create_audit_log(action='create', model_name='Coupon'))
        self.assertFalse(AuditLog.objects.exists())

    def test_audit_log_list_is_admin_only(self):
        create_audit_log(user=self.admin, action='create', model_name='Coupon', object_id=1)
        create_audit_log(user=self.admin, action='delete', model_name='Coupon', object_id=1)

        self.client.authenticate_user(TestDataFactory.create_user())
        response = self.client.get('/api/v1/audit-logs/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.authenticate_user(self.admin)
        response = self.client.get('/api/v1/audit-logs/?action=delete')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['action'], 'delete')
