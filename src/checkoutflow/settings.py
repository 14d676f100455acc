"""Runtime settings for checkoutflow, read from the environment."""

import os
from pathlib import Path

# Local data directory (persisted cart, capture ledger)
# Can be overridden via CHECKOUTFLOW_DATA_DIR environment variable
_default_data_dir = Path(__file__).parent.parent.parent / "data"
DATA_DIR = Path(os.environ.get("CHECKOUTFLOW_DATA_DIR", _default_data_dir))

# Backend REST API
API_URL = os.environ.get("CHECKOUTFLOW_API_URL", "http://localhost:5000/api")
API_TOKEN = os.environ.get("CHECKOUTFLOW_API_TOKEN")
HTTP_TIMEOUT = float(os.environ.get("CHECKOUTFLOW_TIMEOUT", "15"))

# Hosted payment page fallback polling (seconds)
POLL_INTERVAL = float(os.environ.get("CHECKOUTFLOW_POLL_INTERVAL", "2.0"))
POLL_TIMEOUT = float(os.environ.get("CHECKOUTFLOW_POLL_TIMEOUT", "900"))

CASHFREE_MODE = os.environ.get("CHECKOUTFLOW_CASHFREE_MODE", "sandbox")
CASHFREE_HOSTED_URL = "https://payments.cashfree.com/forms/{token}"

LOG_LEVEL = os.environ.get("CHECKOUTFLOW_LOG_LEVEL", "INFO")
LOG_FORMAT = os.environ.get(
    "CHECKOUTFLOW_LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
