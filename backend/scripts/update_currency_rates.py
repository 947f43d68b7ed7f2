#!/usr/bin/env python3
# backend/scripts/update_currency_rates.py
"""
Daily currency rates job.

Fetches the live USD rate set and stores it for today's UTC date, so the
database rate provider has something to fall back on when the live API is
down. Schedule once a day (cron, Kubernetes CronJob, ...):

    python backend/scripts/update_currency_rates.py

Exits non-zero when the rates could not be fetched or stored.
"""
import logging
import sys
from pathlib import Path

# Setup path to import tradeclarity modules
backend_dir = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_dir))

from tradeclarity.config import settings
from tradeclarity.database import SessionLocal
from tradeclarity.services.currency import store_daily_rates
from tradeclarity.services.exceptions import RateProviderError
from tradeclarity.utils import setup_logging

logger = logging.getLogger(__name__)


def main() -> int:
    setup_logging()
    db = SessionLocal()
    try:
        stored = store_daily_rates(db, settings.fx_free_api_url)
    except RateProviderError as e:
        logger.error(f"Currency rates update failed: {e}")
        return 1
    except Exception as e:
        logger.error(f"Currency rates could not be stored: {e}", exc_info=True)
        return 1
    finally:
        db.close()

    logger.info(f"Currency rates update complete ({stored} rates)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
