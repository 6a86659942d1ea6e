"""
포인트 구독 갱신 배치 (cron 등 Lambda 밖에서 실행할 때)

    python scripts/process_subscriptions.py
"""

import logging
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from payapi.config import get_settings
from payapi.database.connection import Database
from payapi.logging_config import setup_logging
from payapi.services.aws_service import AwsService
from payapi.services.notification_service import NotificationService
from payapi.services.subscription_renewal_service import SubscriptionRenewalService

logger = logging.getLogger("payapi")


def main() -> int:
    settings = get_settings()
    setup_logging("DEBUG" if settings.DEBUG else "INFO")
    database = Database(settings)
    notifier = NotificationService(AwsService(settings), settings)

    try:
        with database.session_scope() as db:
            result = SubscriptionRenewalService(db, settings, notifier).process_due_renewals()
    finally:
        database.dispose()

    logger.info(result.model_dump_json(exclude={"details"}))
    return 1 if result.failed else 0


if __name__ == "__main__":
    sys.exit(main())
