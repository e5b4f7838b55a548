# backend/tests/test_urls.py

from unittest.mock import patch

from django.db import DatabaseError
from django.test import TestCase
from rest_framework.test import APIClient


class HealthCheckTests(TestCase):
    def setUp(self):
        self.client = APIClient()

    def test_health_ok(self):
        res = self.client.get("/api/health/")

        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data, {"status": "ok", "db": "ok"})

    def test_health_degraded_when_db_down(self):
        with patch("backend.urls.connections") as mock_connections:
            mock_connections.__getitem__.return_value.cursor.side_effect = DatabaseError("down")
            with self.assertLogs("backend.urls", level="ERROR"):
                res = self.client.get("/api/health/")

        self.assertEqual(res.status_code, 503)
        self.assertEqual(res.data["db"], "down")

    def test_api_root_is_public(self):
        res = self.client.get("/api/")

        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["modules"]["orders"], "/api/orders/")
