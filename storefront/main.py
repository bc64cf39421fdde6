import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import func, insert, inspect, select, text
from sqlalchemy.engine import Connection

from storefront import __version__, analytics, auth, config, orders, products, users
from storefront.auth import get_optional_user, hash_password
from storefront.database import get_db, get_engine, init_db, metadata, utcnow
from storefront.database import products as products_table
from storefront.database import users as users_table
from storefront.errors import AccessDenied, Conflict, install_error_handlers
from storefront.logger import get_logger
from storefront.schemas import ProductCreate, User

_logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title="storefront", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_error_handlers(app)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - started) * 1000
    _logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed:.1f} ms)")
    return response


app.include_router(auth.router)
app.include_router(products.router)
app.include_router(orders.router)
app.include_router(users.router)
app.include_router(analytics.router)


@app.get("/")
def root():
    return {"status": "ok", "service": "storefront", "version": __version__}


@app.get("/schema")
def schema_overview():
    return {"tables": sorted(metadata.tables)}


@app.get("/test")
def test_database():
    status = {
        "backend": "running",
        "database": "not-configured",
    }
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
            status["database"] = "connected"
            status["tables"] = sorted(inspect(conn).get_table_names())
    except Exception:
        _logger.exception("Database check failed")
        status["database"] = "error"
    return status


DEMO_PRODUCTS = [
    {
        "title": "Exide Xplore XLTZ4 Bike Battery",
        "description": "Maintenance free battery for 100-125cc motorcycles.",
        "category": "Two-Wheeler Batteries",
        "brand": "Exide",
        "dp_price": 1150.0,
        "mrp_price": 1450.0,
        "stock": 40,
        "tags": ["maintenance-free", "bike"],
        "specifications": {"capacity": "4Ah", "voltage": "12V", "warranty": "48 months"},
    },
    {
        "title": "Amaron Pro 55B24LS Car Battery",
        "description": "High cranking power for hatchbacks and compact sedans.",
        "category": "Four-Wheeler Batteries",
        "brand": "Amaron",
        "dp_price": 5200.0,
        "mrp_price": 6400.0,
        "stock": 18,
        "tags": ["car", "maintenance-free"],
        "specifications": {"capacity": "45Ah", "voltage": "12V", "warranty": "72 months"},
    },
    {
        "title": "Luminous Zelio+ 1100 Inverter",
        "description": "Pure sine wave home inverter with LCD display.",
        "category": "Inverters",
        "brand": "Luminous",
        "dp_price": 7100.0,
        "mrp_price": 8990.0,
        "stock": 12,
        "tags": ["sine-wave", "home"],
        "specifications": {"rating": "900VA", "battery_support": "single"},
    },
    {
        "title": "Microtek Solar PCU 1235",
        "description": "Solar power conditioning unit with grid charging.",
        "category": "Solar PCU",
        "brand": "Microtek",
        "dp_price": 9800.0,
        "mrp_price": 12500.0,
        "stock": 6,
        "tags": ["solar", "mppt"],
        "specifications": {"rating": "1100VA", "panel_support": "up to 800W"},
    },
    {
        "title": "Exide Powersafe 12V 7Ah UPS Battery",
        "description": "Sealed lead acid battery for desktop UPS units.",
        "category": "UPS Battery",
        "brand": "Exide",
        "dp_price": 950.0,
        "mrp_price": 1200.0,
        "stock": 55,
        "tags": ["ups", "smf"],
        "specifications": {"capacity": "7Ah", "voltage": "12V"},
    },
    {
        "title": "Heavy Duty Inverter Trolley",
        "description": "Powder coated trolley for an inverter and one tall tubular battery.",
        "category": "Inverter Trolley",
        "brand": "Generic",
        "dp_price": 1400.0,
        "mrp_price": 1900.0,
        "stock": 25,
        "tags": ["accessory"],
        "specifications": {"material": "steel", "wheels": 4},
    },
    {
        "title": "Acid Proof Battery Tray",
        "description": "Moulded tray that contains spills under tubular batteries.",
        "category": "Battery Tray",
        "brand": "Generic",
        "dp_price": 350.0,
        "mrp_price": 499.0,
        "stock": 80,
        "tags": ["accessory"],
        "specifications": {"material": "polypropylene"},
    },
    {
        "title": "Distilled Battery Water 5L",
        "description": "Top-up water for flooded lead acid batteries.",
        "category": "Others",
        "brand": "Luminous",
        "dp_price": 180.0,
        "mrp_price": 250.0,
        "stock": 120,
        "tags": ["maintenance"],
        "specifications": {"volume": "5L"},
    },
]


# Seed demo data if empty
@app.post("/_api/admin/seed")
def seed_demo(user: Optional[User] = Depends(get_optional_user), conn: Connection = Depends(get_db)):
    admin_exists = conn.execute(select(users_table.c.id).where(users_table.c.role == "admin").limit(1)).first()
    if admin_exists and (user is None or user.role != "admin"):
        raise AccessDenied()

    now = utcnow()
    if not admin_exists:
        # an existing account is never promoted here
        taken = conn.execute(select(users_table.c.id).where(users_table.c.email == config.ADMIN_EMAIL)).first()
        if taken:
            _logger.warning(f"Seed refused: {config.ADMIN_EMAIL} already belongs to user {taken.id}")
            raise Conflict(f"Admin email {config.ADMIN_EMAIL} is already registered")
        conn.execute(
            insert(users_table).values(
                email=config.ADMIN_EMAIL,
                display_name="Administrator",
                role="admin",
                password_hash=hash_password(config.ADMIN_PASSWORD),
                created_at=now,
                updated_at=now,
            )
        )
        _logger.info(f"Created admin account {config.ADMIN_EMAIL}")

    if conn.execute(select(func.count()).select_from(products_table)).scalar_one() > 0:
        conn.commit()
        return {"status": "already-seeded"}

    rows = [
        {**ProductCreate(**d).model_dump(), "is_active": True, "created_at": now, "updated_at": now}
        for d in DEMO_PRODUCTS
    ]
    conn.execute(insert(products_table), rows)
    conn.commit()
    _logger.info(f"Seeded {len(rows)} demo products")
    return {"status": "seeded", "count": len(rows)}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
