import os

# Must be set before signdesk.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./signdesk_test.db")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("APP_BASE_URL", "https://sign.example.test")

pytest_plugins = ["tests.test_db"]
