import unittest

from sqlalchemy import select
from sqlalchemy.dialects import mysql, postgresql

from storefront import config
from storefront.database import products
from storefront.products import _tags_overlap
from tests.support import ApiTestCase

NEW_PRODUCT = {
    "title": "Luminous Red Charge RC18000",
    "description": "Tall tubular inverter battery",
    "category": "Inverters",
    "brand": "Luminous",
    "imageUrl": "https://cdn.example.com/rc18000.png",
    "dpPrice": 12000,
    "mrpPrice": 15500,
    "stock": 8,
    "tags": ["tubular", "home"],
    "specifications": {"capacity": "150Ah", "warranty": {"months": 36}},
}


class ProductListTestCase(ApiTestCase):
    def test_list_is_public_and_excludes_inactive(self):
        active = self.create_product(title="Active")
        hidden = self.create_product(title="Hidden", is_active=False)

        res = self.client.get("/_api/products/list")
        self.assertEqual(res.status_code, 200)
        ids = [p["id"] for p in res.json()["products"]]
        self.assertIn(active, ids)
        self.assertNotIn(hidden, ids)
        self.assertEqual(res.json()["pagination"]["totalCount"], 1)

    def test_pagination_math(self):
        for i in range(5):
            self.create_product(title=f"Battery {i}")

        res = self.client.get("/_api/products/list", params={"page": 3, "limit": 2})
        body = res.json()
        self.assertEqual(len(body["products"]), 1)
        self.assertEqual(
            body["pagination"],
            {
                "currentPage": 3,
                "totalPages": 3,
                "totalCount": 5,
                "limit": 2,
                "hasNextPage": False,
                "hasPreviousPage": True,
            },
        )

        res = self.client.get("/_api/products/list", params={"page": 1, "limit": 2})
        self.assertTrue(res.json()["pagination"]["hasNextPage"])
        self.assertFalse(res.json()["pagination"]["hasPreviousPage"])

    def test_empty_list_has_zero_pages(self):
        body = self.client.get("/_api/products/list").json()
        self.assertEqual(body["products"], [])
        self.assertEqual(body["pagination"]["totalPages"], 0)
        self.assertFalse(body["pagination"]["hasNextPage"])

    def test_default_order_is_newest_first(self):
        first = self.create_product(title="First")
        second = self.create_product(title="Second")
        ids = [p["id"] for p in self.client.get("/_api/products/list").json()["products"]]
        self.assertEqual(ids, [second, first])

    def test_filters(self):
        exide = self.create_product(title="Exide Car", brand="Exide", dp_price=5000, mrp_price=6000, tags=["car"])
        amaron = self.create_product(
            title="Amaron Bike",
            brand="Amaron",
            category="Two-Wheeler Batteries",
            dp_price=900,
            mrp_price=1200,
            tags=["bike", "maintenance-free"],
        )
        solar = self.create_product(
            title="Solar PCU",
            brand="Microtek",
            category="Solar PCU",
            description="Grid tie charger",
            dp_price=9000,
            mrp_price=9500,
            tags=["solar"],
        )

        def ids(**params):
            res = self.client.get("/_api/products/list", params=params)
            self.assertEqual(res.status_code, 200, res.text)
            return sorted(p["id"] for p in res.json()["products"])

        self.assertEqual(ids(category="Two-Wheeler Batteries"), [amaron])
        self.assertEqual(ids(brand="exi"), [exide])
        self.assertEqual(ids(minPrice=1000, maxPrice=6000), [exide])
        self.assertEqual(ids(tags="solar,bike"), sorted([amaron, solar]))
        self.assertEqual(ids(tags="nothing"), [])
        self.assertEqual(ids(search="grid tie"), [solar])

    def test_sorting(self):
        cheap = self.create_product(title="B", dp_price=50, mrp_price=60)
        dear = self.create_product(title="A", dp_price=500, mrp_price=600)

        res = self.client.get("/_api/products/list", params={"sortBy": "price", "sortOrder": "asc"})
        self.assertEqual([p["id"] for p in res.json()["products"]], [cheap, dear])

        res = self.client.get("/_api/products/list", params={"sortBy": "name", "sortOrder": "asc"})
        self.assertEqual([p["id"] for p in res.json()["products"]], [dear, cheap])

    def test_bad_query_is_rejected(self):
        for params in ({"limit": 0}, {"limit": 101}, {"page": 0}, {"sortBy": "stock"}, {"minPrice": "cheap"}):
            res = self.client.get("/_api/products/list", params=params)
            self.assertError(res, 400, "Invalid request data")
            self.assertTrue(res.json()["details"])


class TagOverlapSqlTestCase(unittest.TestCase):
    def compile(self, dialect, dialect_name):
        return str(_tags_overlap(["solar", "bike"], dialect_name).compile(dialect=dialect))

    def test_postgresql_uses_jsonb_any_key(self):
        sql = self.compile(postgresql.dialect(), "postgresql")
        self.assertIn("?|", sql)
        self.assertIn("JSONB", sql)
        self.assertNotIn("json_each", sql)

    def test_mysql_uses_json_overlaps(self):
        sql = self.compile(mysql.dialect(), "mysql")
        self.assertIn("json_overlaps", sql.lower())
        self.assertNotIn("json_each", sql)

    def test_sqlite_uses_json_each(self):
        self.assertIn("json_each", str(_tags_overlap(["solar"])))


class ProductGetTestCase(ApiTestCase):
    def test_get_returns_product_with_derived_fields(self):
        pid = self.create_product(stock=0, specifications={"capacity": "35Ah"})
        res = self.client.get("/_api/products/get", params={"id": pid})
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertEqual(body["id"], pid)
        self.assertEqual(body["dpPrice"], 100.0)
        self.assertEqual(body["stockStatus"], "out_of_stock")
        self.assertTrue(body["isActive"])
        self.assertEqual(body["specifications"], {"capacity": "35Ah"})
        self.assertNotIn("lifecycle", body)

    def test_get_missing_or_inactive_is_404(self):
        hidden = self.create_product(is_active=False)
        self.assertError(self.client.get("/_api/products/get", params={"id": 999}), 404, "Product not found")
        self.assertError(self.client.get("/_api/products/get", params={"id": hidden}), 404, "Product not found")

    def test_get_invalid_id_is_400(self):
        self.assertError(self.client.get("/_api/products/get", params={"id": "abc"}), 400)
        self.assertError(self.client.get("/_api/products/get"), 400)


class ProductAdminTestCase(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.admin_id = self.create_admin()
        self.login_as(self.admin_id)

    def test_create_product(self):
        res = self.client.post("/_api/products/create", json=NEW_PRODUCT)
        self.assertEqual(res.status_code, 200, res.text)
        body = res.json()
        self.assertEqual(body["title"], NEW_PRODUCT["title"])
        self.assertEqual(body["mrpPrice"], 15500)
        self.assertEqual(body["tags"], ["tubular", "home"])
        self.assertEqual(body["specifications"]["warranty"], {"months": 36})
        self.assertTrue(body["isActive"])

        with self.engine.connect() as conn:
            row = conn.execute(select(products).where(products.c.id == body["id"])).mappings().one()
        self.assertLessEqual(row["dp_price"], row["mrp_price"])

    def test_create_rejects_dp_above_mrp(self):
        res = self.client.post("/_api/products/create", json={**NEW_PRODUCT, "dpPrice": 20000})
        self.assertError(res, 400, "Invalid request data")
        self.assertIn("DP price cannot be higher than MRP price", str(res.json()["details"]))

        with self.engine.connect() as conn:
            self.assertIsNone(conn.execute(select(products.c.id)).first())

    def test_create_rejects_unknown_category_and_bad_url(self):
        self.assertError(self.client.post("/_api/products/create", json={**NEW_PRODUCT, "category": "Phones"}), 400)
        self.assertError(self.client.post("/_api/products/create", json={**NEW_PRODUCT, "imageUrl": "not a url"}), 400)

    def test_update_applies_only_sent_fields(self):
        pid = self.create_product(title="Old", stock=3)
        res = self.client.get("/_api/products/get", params={"id": pid})
        before = res.json()

        res = self.client.post("/_api/products/update", json={"id": pid, "stock": 7})
        self.assertEqual(res.status_code, 200, res.text)
        after = res.json()
        self.assertEqual(after["stock"], 7)
        self.assertEqual(after["title"], "Old")
        self.assertGreater(after["updatedAt"], before["updatedAt"])

    def test_update_checks_merged_prices(self):
        pid = self.create_product(dp_price=100, mrp_price=150)
        res = self.client.post("/_api/products/update", json={"id": pid, "dpPrice": 200})
        self.assertError(res, 400, "DP price cannot be higher than MRP price")

    def test_update_missing_is_404(self):
        self.assertError(self.client.post("/_api/products/update", json={"id": 999, "stock": 1}), 404)

    def test_update_rejects_null_for_required_column(self):
        pid = self.create_product()
        self.assertError(self.client.post("/_api/products/update", json={"id": pid, "title": None}), 400)

    def test_delete_twice(self):
        pid = self.create_product()

        res = self.client.post("/_api/products/delete", json={"productId": pid})
        self.assertEqual(res.status_code, 200, res.text)
        self.assertEqual(
            res.json(),
            {"success": True, "message": "Product deleted successfully", "productId": pid},
        )

        res = self.client.post("/_api/products/delete", json={"productId": pid})
        self.assertError(res, 400, "Product is already deleted")

        ids = [p["id"] for p in self.client.get("/_api/products/list").json()["products"]]
        self.assertNotIn(pid, ids)

    def test_update_can_reactivate(self):
        pid = self.create_product(is_active=False)
        res = self.client.post("/_api/products/update", json={"id": pid, "isActive": True})
        self.assertEqual(res.status_code, 200, res.text)
        self.assertTrue(res.json()["isActive"])
        self.assertEqual(self.client.get("/_api/products/get", params={"id": pid}).status_code, 200)

    def test_delete_missing_is_404(self):
        self.assertError(self.client.post("/_api/products/delete", json={"productId": 999}), 404, "Product not found")


class ProductAccessTestCase(ApiTestCase):
    def test_mutations_need_a_session(self):
        pid = self.create_product()
        for path, body in (
            ("/_api/products/create", NEW_PRODUCT),
            ("/_api/products/update", {"id": pid, "stock": 1}),
            ("/_api/products/delete", {"productId": pid}),
        ):
            self.assertError(self.client.post(path, json=body), 401, "Authentication required")

    def test_mutations_need_admin_role(self):
        self.login_as(self.create_user())
        res = self.client.post("/_api/products/create", json=NEW_PRODUCT)
        self.assertError(res, 403, "Access denied. Admin role required.")

    def test_identity_is_checked_before_payload(self):
        self.assertError(self.client.post("/_api/products/create", json={"title": ""}), 401)
        self.login_as(self.create_user())
        self.assertError(self.client.post("/_api/products/create", json={"title": ""}), 403)

    def test_garbage_cookie_is_anonymous(self):
        self.client.cookies.set(config.SESSION_COOKIE_NAME, "not-a-token")
        self.assertError(self.client.post("/_api/products/delete", json={"productId": 1}), 401)


if __name__ == "__main__":
    unittest.main()
