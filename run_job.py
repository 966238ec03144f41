"""Run one pipeline job from the command line, e.g. from an external cron.

    python run_job.py refresh
    python run_job.py market_gaps --create-tables
"""
import argparse
import json
import sys

from dotenv import load_dotenv

# Load environment variables from .env before the package reads them
load_dotenv()

from propwatch import models  # noqa: E402,F401
from propwatch.db import Base, engine  # noqa: E402
from propwatch.jobs import STAGES, run_job  # noqa: E402


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run a propwatch job once.")
    parser.add_argument("job", choices=sorted(STAGES))
    parser.add_argument("--create-tables", action="store_true", help="create missing tables first")
    args = parser.parse_args(argv)

    if args.create_tables:
        Base.metadata.create_all(bind=engine)

    result = run_job(args.job)
    print(json.dumps(result, indent=2, default=str))
    return 1 if result["status"] == "error" else 0


if __name__ == "__main__":
    sys.exit(main())
