"""
Tests for Redis-based rate limiting.
"""
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import redis
from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from rest_framework.response import Response
from rest_framework.test import APIRequestFactory
from rest_framework.views import APIView

from core.rate_limiting import get_caller_key, get_client_ip, rate_limit

User = get_user_model()


class LimitedView(APIView):
    authentication_classes = []
    permission_classes = []

    @rate_limit(max_requests=2, window_seconds=60)
    def post(self, request):
        return Response({'ok': True})


@override_settings(RATE_LIMIT_ENABLED=True)
class RateLimitTestCase(TestCase):
    """Test cases for the rate_limit decorator."""

    def setUp(self):
        self.factory = APIRequestFactory()
        self.client_mock = MagicMock()
        self.client_mock.ttl.return_value = 42
        patcher = patch('core.rate_limiting.get_redis_client', return_value=self.client_mock)
        patcher.start()
        self.addCleanup(patcher.stop)

    def call(self):
        request = self.factory.post('/limited/', REMOTE_ADDR='10.0.0.7')
        return LimitedView.as_view()(request)

    def test_under_limit_adds_headers(self):
        self.client_mock.incr.return_value = 1

        response = self.call()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['X-RateLimit-Limit'], '2')
        self.assertEqual(response['X-RateLimit-Remaining'], '1')
        self.client_mock.incr.assert_called_once_with('rate_limit:LimitedView.post:ip:10.0.0.7')
        self.client_mock.expire.assert_called_once_with(
            'rate_limit:LimitedView.post:ip:10.0.0.7', 60
        )

    def test_over_limit_rejected(self):
        self.client_mock.incr.return_value = 3

        response = self.call()

        self.assertEqual(response.status_code, 429)
        self.assertEqual(response['Retry-After'], '42')
        self.assertEqual(response.data['retry_after'], 42)
        self.client_mock.expire.assert_not_called()

    def test_fails_open_on_redis_error(self):
        self.client_mock.incr.side_effect = redis.ConnectionError('down')

        response = self.call()

        self.assertEqual(response.status_code, 200)

    def test_fails_open_without_redis(self):
        with patch('core.rate_limiting.get_redis_client', return_value=None):
            response = self.call()

        self.assertEqual(response.status_code, 200)
        self.client_mock.incr.assert_not_called()

    @override_settings(RATE_LIMIT_ENABLED=False)
    def test_disabled(self):
        response = self.call()

        self.assertEqual(response.status_code, 200)
        self.client_mock.incr.assert_not_called()


class CallerKeyTestCase(TestCase):
    """Test cases for caller identification."""

    def setUp(self):
        self.factory = APIRequestFactory()

    def test_forwarded_for_first_hop(self):
        request = self.factory.get('/', HTTP_X_FORWARDED_FOR='203.0.113.9, 10.0.0.1')

        self.assertEqual(get_client_ip(request), '203.0.113.9')

    def test_authenticated_user_keyed_by_account(self):
        user = User.objects.create_user(username='asha')
        request = SimpleNamespace(user=user, META={'REMOTE_ADDR': '10.0.0.7'})

        self.assertEqual(get_caller_key(request), f'user:{user.pk}')

    def test_anonymous_keyed_by_ip(self):
        request = self.factory.get('/', REMOTE_ADDR='10.0.0.7')

        self.assertEqual(get_caller_key(request), 'ip:10.0.0.7')
