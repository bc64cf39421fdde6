import unittest
from datetime import datetime, timedelta, timezone

import jwt

from storefront import config
from storefront.auth import create_session_token, hash_password, verify_password
from tests.support import ApiTestCase


class PasswordTestCase(unittest.TestCase):
    def test_hash_and_verify(self):
        hashed = hash_password("s3cret-pass")
        self.assertNotEqual(hashed, "s3cret-pass")
        self.assertTrue(verify_password("s3cret-pass", hashed))
        self.assertFalse(verify_password("wrong", hashed))
        self.assertFalse(verify_password("s3cret-pass", None))

    def test_session_token_carries_user_id(self):
        payload = jwt.decode(create_session_token(7), config.JWT_SECRET, algorithms=[config.JWT_ALGO])
        self.assertEqual(payload["sub"], "7")
        self.assertGreater(payload["exp"], payload["iat"])


class AuthFlowTestCase(ApiTestCase):
    def test_register_sets_session(self):
        res = self.client.post(
            "/_api/auth/register_with_password",
            json={"email": "ravi@example.com", "password": "battery123", "displayName": "Ravi"},
        )
        self.assertEqual(res.status_code, 200, res.text)
        self.assertEqual(res.json()["user"]["role"], "user")
        self.assertIn(config.SESSION_COOKIE_NAME, res.cookies)

        res = self.client.get("/_api/auth/session")
        self.assertEqual(res.status_code, 200, res.text)
        self.assertEqual(res.json()["user"]["email"], "ravi@example.com")
        self.assertNotIn("passwordHash", res.json()["user"])

    def test_register_duplicate_email(self):
        self.create_user(email="ravi@example.com")
        res = self.client.post(
            "/_api/auth/register_with_password",
            json={"email": "ravi@example.com", "password": "battery123", "displayName": "Ravi"},
        )
        self.assertError(res, 400, "Email already registered")

    def test_register_validation(self):
        res = self.client.post(
            "/_api/auth/register_with_password",
            json={"email": "ravi@example.com", "password": "short", "displayName": "Ravi"},
        )
        self.assertError(res, 400, "Invalid request data")
        self.assertEqual(res.json()["details"][0]["field"], "password")

    def test_login_and_logout(self):
        self.create_user(email="ravi@example.com", password="battery123")

        res = self.client.post("/_api/auth/login_with_password", json={"email": "ravi@example.com", "password": "nope"})
        self.assertError(res, 401, "Invalid credentials")
        res = self.client.post(
            "/_api/auth/login_with_password", json={"email": "nobody@example.com", "password": "battery123"}
        )
        self.assertError(res, 401, "Invalid credentials")

        res = self.client.post(
            "/_api/auth/login_with_password", json={"email": "ravi@example.com", "password": "battery123"}
        )
        self.assertEqual(res.status_code, 200, res.text)
        self.assertEqual(self.client.get("/_api/auth/session").status_code, 200)

        res = self.client.post("/_api/auth/logout")
        self.assertEqual(res.json(), {"success": True, "message": "Logged out successfully"})
        self.assertError(self.client.get("/_api/auth/session"), 401, "Authentication required")

    def test_expired_or_orphaned_token(self):
        expired = jwt.encode(
            {"sub": "1", "exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
            config.JWT_SECRET,
            algorithm=config.JWT_ALGO,
        )
        self.client.cookies.set(config.SESSION_COOKIE_NAME, expired)
        self.assertError(self.client.get("/_api/auth/session"), 401)

        # token for a user that does not exist
        self.login_as(12345)
        self.assertError(self.client.get("/_api/auth/session"), 401)


class ServiceSurfaceTestCase(ApiTestCase):
    def test_health_endpoints(self):
        self.assertEqual(self.client.get("/").json()["status"], "ok")
        self.assertIn("products", self.client.get("/schema").json()["tables"])
        self.assertEqual(self.client.get("/test").json()["database"], "connected")

    def test_unknown_route_uses_error_shape(self):
        res = self.client.get("/_api/nothing")
        self.assertError(res, 404, "Not Found")

    def test_seed(self):
        res = self.client.post("/_api/admin/seed")
        self.assertEqual(res.json(), {"status": "seeded", "count": 8})
        categories = {p["category"] for p in self.client.get("/_api/products/list").json()["products"]}
        self.assertEqual(len(categories), 8)

        # an admin now exists, so seeding is closed to everyone else
        self.assertError(self.client.post("/_api/admin/seed"), 403)

        res = self.client.post(
            "/_api/auth/login_with_password",
            json={"email": config.ADMIN_EMAIL, "password": config.ADMIN_PASSWORD},
        )
        self.assertEqual(res.status_code, 200, res.text)
        self.assertEqual(res.json()["user"]["role"], "admin")
        self.assertEqual(self.client.post("/_api/admin/seed").json(), {"status": "already-seeded"})

    def test_seed_never_promotes_an_existing_account(self):
        res = self.client.post(
            "/_api/auth/register_with_password",
            json={"email": config.ADMIN_EMAIL, "password": "squatter123", "displayName": "Squatter"},
        )
        self.assertEqual(res.status_code, 200, res.text)

        res = self.client.post("/_api/admin/seed")
        self.assertError(res, 409)

        self.assertEqual(self.client.get("/_api/auth/session").json()["user"]["role"], "user")
        self.assertError(self.client.get("/_api/users/list"), 403)
        self.assertEqual(self.client.get("/_api/products/list").json()["products"], [])


if __name__ == "__main__":
    unittest.main()
