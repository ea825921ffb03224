import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# Must be set before any service's database module is imported.
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(PROJECT_ROOT, "test_yourspace.db")
os.environ["JWT_SECRET_KEY"] = "super-secret-yourspace-key"
os.environ["JWT_ALGORITHM"] = "HS256"
os.environ["TESTING"] = "1"
os.environ.pop("REDIS_URL", None)
os.environ.pop("ADMIN_SIGNUP_CODE", None)
