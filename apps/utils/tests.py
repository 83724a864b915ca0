# apps/utils/tests.py
import json
import logging
import re

from django.core.cache import cache
from django.test import RequestFactory, SimpleTestCase, TestCase
from django.urls import reverse
from rest_framework.exceptions import ValidationError
from rest_framework.request import Request
from rest_framework.test import APIClient

from .exceptions import BusinessLogicException, custom_exception_handler
from .logging import JSONFormatter
from .pagination import StandardResultsSetPagination
from .resilience import CircuitBreaker, CircuitOpenError
from .utils import generate_order_number
from .validators import to_e164, validate_gps_address, validate_phone


class ValidatorTests(SimpleTestCase):
    def test_phone_validator(self):
        self.assertEqual(validate_phone("0241234567"), "0241234567")
        self.assertEqual(validate_phone("+233551234567"), "+233551234567")
        with self.assertRaises(ValidationError):
            validate_phone("123")
        with self.assertRaises(ValidationError):
            validate_phone("0991234567")  # not a Ghana network prefix

    def test_gps_address(self):
        self.assertEqual(validate_gps_address("BA-123-4567"), "BA-123-4567")
        self.assertEqual(validate_gps_address(""), "")
        with self.assertRaises(ValidationError):
            validate_gps_address("sunyani")

    def test_to_e164(self):
        self.assertEqual(to_e164("024 123 4567"), "+233241234567")
        self.assertEqual(to_e164("+233241234567"), "+233241234567")


class OrderNumberTests(SimpleTestCase):
    def test_format(self):
        number = generate_order_number()
        self.assertRegex(number, re.compile(r"^GH-\d{8}-[A-Z0-9]{4}$"))


class ExceptionHandlerTests(SimpleTestCase):
    def test_business_error_body(self):
        exc = BusinessLogicException("Stock not available", code="out_of_stock", product_id="p1")

        response = custom_exception_handler(exc, {})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data, {"error": "Stock not available", "code": "out_of_stock", "product_id": "p1"})

    def test_unhandled_error_is_500(self):
        with self.assertLogs("apps.utils.exceptions", level="ERROR"):
            response = custom_exception_handler(RuntimeError("boom"), {})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data["code"], "server_error")


class PaginationTests(SimpleTestCase):
    def _paginate(self, items, query):
        request = Request(RequestFactory().get("/", query))
        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(items, request)
        return paginator.get_paginated_response(page).data

    def test_envelope(self):
        data = self._paginate(list(range(25)), {"page": 2, "limit": 10})

        self.assertEqual(data["results"], list(range(10, 20)))
        self.assertEqual(data["pagination"], {"page": 2, "limit": 10, "total": 25, "total_pages": 3})

    def test_limit_capped(self):
        data = self._paginate(list(range(80)), {"limit": 1000})
        self.assertEqual(data["pagination"]["limit"], 50)


class CircuitBreakerTests(SimpleTestCase):
    def setUp(self):
        self.breaker = CircuitBreaker("test-service", failure_threshold=3, recovery_timeout=60)
        self.breaker.reset()
        self.addCleanup(self.breaker.reset)

    def test_opens_after_threshold(self):
        calls = []

        @self.breaker
        def flaky():
            calls.append(1)
            raise ConnectionError("down")

        for _ in range(3):
            with self.assertRaises(ConnectionError):
                flaky()

        with self.assertRaises(CircuitOpenError):
            flaky()
        self.assertEqual(len(calls), 3)

    def test_success_passes_through(self):
        wrapped = self.breaker(lambda x: x * 2)
        self.assertEqual(wrapped(21), 42)
        self.assertIsNone(cache.get(self.breaker.cache_key_failures))


class JSONFormatterTests(SimpleTestCase):
    def test_scrubs_and_adds_context(self):
        record = logging.LogRecord("apps.payments", logging.INFO, __file__, 1, {"secret": "sk_live", "amount": 5}, None, None)
        record.order_id = "abc"

        line = json.loads(JSONFormatter().format(record))

        self.assertIn("***REDACTED***", line["msg"])
        self.assertNotIn("sk_live", line["msg"])
        self.assertEqual(line["order_id"], "abc")


class ConfigEndpointTests(TestCase):
    def test_public_config(self):
        response = APIClient().get(reverse("global-config"))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["currency"], "GHS")
        self.assertIn("bono", response.data["delivery_fee_zones"])

    def test_health(self):
        response = self.client.get(reverse("health-check"))
        self.assertEqual(response.json()["status"], "ok")
