import os
import tempfile
from pathlib import Path

# Settings are read once at import time; point the app at a throwaway
# database and keep the hourly job out of the test process.
_TEST_DATA_DIR = Path(tempfile.mkdtemp(prefix="learning_plan_tests_"))
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATA_DIR", str(_TEST_DATA_DIR))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TEST_DATA_DIR / 'app.db'}")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
