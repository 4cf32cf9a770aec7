# Services build their database engines at import time; tests use in-memory SQLite
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
