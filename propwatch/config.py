# propwatch/config.py
"""Runtime settings read from the environment (and `.env` when present)."""
import os
from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# matching
MATCH_MIN_SCORE = int(os.getenv("MATCH_MIN_SCORE", "70"))

# lifecycle / re-check scheduling
MAX_CONSECUTIVE_FAILURES = int(os.getenv("MAX_CONSECUTIVE_FAILURES", "5"))
FAILURE_PENALTY = int(os.getenv("FAILURE_PENALTY", "20"))
PRIORITY_PERSIST_DELTA = int(os.getenv("PRIORITY_PERSIST_DELTA", "5"))
REFRESH_BATCH_SIZE = int(os.getenv("REFRESH_BATCH_SIZE", "50"))
REFRESH_DELAY_SECONDS = float(os.getenv("REFRESH_DELAY_SECONDS", "1.5"))
REFRESH_BUDGET_SECONDS = float(os.getenv("REFRESH_BUDGET_SECONDS", "300"))
HEALTH_CHECK_TIMEOUT_SECONDS = float(os.getenv("HEALTH_CHECK_TIMEOUT_SECONDS", "10"))
HEADLESS = os.getenv("HEADLESS", "1") == "1"

# market gaps
MARKET_GAP_MIN_PERCENT = float(os.getenv("MARKET_GAP_MIN_PERCENT", "15"))
MARKET_GAP_MIN_STREET_SAMPLE = int(os.getenv("MARKET_GAP_MIN_STREET_SAMPLE", "3"))

# exhaustive crawl
CRAWL_PAGES_PER_RUN = int(os.getenv("CRAWL_PAGES_PER_RUN", "20"))
CRAWL_DELAY_SECONDS = float(os.getenv("CRAWL_DELAY_SECONDS", "2"))

# timers
REFRESH_INTERVAL_MINUTES = int(os.getenv("REFRESH_INTERVAL_MINUTES", "10"))
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "0") == "1"
