import os
import tempfile

# Point the default database at a scratch directory before any module builds its engine.
os.environ.setdefault("SPENDING_DATA_DIR", tempfile.mkdtemp(prefix="spending-tests-"))
os.environ.setdefault("SPENDING_COACH_URL", "")
