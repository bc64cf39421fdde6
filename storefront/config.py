import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data/storefront.db")

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"

SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "storefront_session")
SESSION_TTL_DAYS = int(os.getenv("SESSION_TTL_DAYS", 7))
SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "").lower() in ("1", "true", "yes")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

DEBUG = bool(os.getenv("DEBUG"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO").upper()

PORT = int(os.getenv("PORT", 8000))

# demo seed account
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin1234")
