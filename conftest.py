"""Global pytest configuration."""

import os

# Postgres-marked tests run only when DATABASE_URL points at PostgreSQL;
# everything else uses in-memory repositories and mocked routers
os.environ.setdefault("LOG_LEVEL", "DEBUG")
