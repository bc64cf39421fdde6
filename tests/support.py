import os
import tempfile
import unittest
from datetime import datetime
from typing import Optional

from fastapi.testclient import TestClient
from sqlalchemy import insert

from storefront import config
from storefront import database as db_database
from storefront.auth import create_session_token, hash_password
from storefront.database import order_items, orders, products, users, utcnow
from storefront.main import app


class ApiTestCase(unittest.TestCase):
    """Runs the app against a throwaway SQLite file per test."""

    def setUp(self):
        # Point the DB to a temporary file and create the schema
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.temp_dir.name, "test.sqlite")
        self.engine = db_database.configure(f"sqlite:///{self.db_path}")
        db_database.init_db()
        self.client = TestClient(app)

    def tearDown(self):
        self.client.close()
        self.engine.dispose()
        self.temp_dir.cleanup()

    # ---------- fixtures ----------

    def create_user(
        self,
        email: str = "user@example.com",
        display_name: str = "Test User",
        role: str = "user",
        password: Optional[str] = None,
    ) -> int:
        now = utcnow()
        with self.engine.begin() as conn:
            result = conn.execute(
                insert(users).values(
                    email=email,
                    display_name=display_name,
                    role=role,
                    password_hash=hash_password(password) if password else None,
                    created_at=now,
                    updated_at=now,
                )
            )
        return result.inserted_primary_key[0]

    def create_admin(self, email: str = "admin@example.com") -> int:
        return self.create_user(email=email, display_name="Admin", role="admin")

    def create_product(self, **fields) -> int:
        now = utcnow()
        values = {
            "title": "Exide Mileage 35Ah",
            "description": "Car battery",
            "category": "Four-Wheeler Batteries",
            "brand": "Exide",
            "dp_price": 100.0,
            "mrp_price": 150.0,
            "stock": 10,
            "tags": [],
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        }
        values.update(fields)
        with self.engine.begin() as conn:
            result = conn.execute(insert(products).values(**values))
        return result.inserted_primary_key[0]

    def create_order(
        self,
        user_id: Optional[int],
        total_amount: float = 200.0,
        status: str = "pending",
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        items=(),
        **fields,
    ) -> int:
        """Insert an order directly; ``items`` are (product_id, title, quantity, unit_price) tuples."""
        created_at = created_at or utcnow()
        with self.engine.begin() as conn:
            result = conn.execute(
                insert(orders).values(
                    user_id=user_id,
                    status=status,
                    total_amount=total_amount,
                    payment_status="pending",
                    payment_method="cash_on_delivery",
                    shipping_address={"line1": "12 MG Road", "city": "Pune"},
                    created_at=created_at,
                    updated_at=updated_at or created_at,
                    **fields,
                )
            )
            order_id = result.inserted_primary_key[0]
            for product_id, title, quantity, unit_price in items:
                conn.execute(
                    insert(order_items).values(
                        order_id=order_id,
                        product_id=product_id,
                        product_title=title,
                        quantity=quantity,
                        unit_price=unit_price,
                        total_price=quantity * unit_price,
                    )
                )
        return order_id

    # ---------- session ----------

    def login_as(self, user_id: int) -> None:
        self.client.cookies.clear()
        self.client.cookies.set(config.SESSION_COOKIE_NAME, create_session_token(user_id))

    def logout(self) -> None:
        self.client.cookies.clear()

    def assertError(self, response, status_code: int, message: Optional[str] = None):
        self.assertEqual(response.status_code, status_code, response.text)
        if message is not None:
            self.assertEqual(response.json()["error"], message)
