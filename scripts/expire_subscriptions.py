# scripts/expire_subscriptions.py
# One-shot sweep for cron: mark lapsed trials and manual grants as expired.

import os
import sys
import logging

from dotenv import load_dotenv
from sqlmodel import Session

# Ensure root path for relative imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

load_dotenv()

from core.database import engine
from services.subscription_service import expire_lapsed_subscriptions

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("expire_subscriptions")


def main() -> int:
    with Session(engine) as session:
        expired = expire_lapsed_subscriptions(session)
    logger.info("Expired %s organizations", expired)
    return expired


if __name__ == "__main__":
    main()
