import logging
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from payapi.config import get_settings
from payapi.database.connection import Database
from payapi.logging_config import setup_logging
from payapi.models.points import PointPackage

logger = logging.getLogger("payapi")

DEFAULT_PACKAGES = [
    # (name, points, price)
    ("500 Points", 500, 500),
    ("1,000 Points", 1000, 1000),
    ("3,000 Points", 3000, 2900),
    ("5,000 Points", 5000, 4800),
    ("10,000 Points", 10000, 9500),
]


def init_db(seed_packages: bool = True):
    """데이터베이스 초기화 - 테이블 생성 후 포인트 상품이 없으면 기본 상품 등록"""
    database = Database(get_settings())
    try:
        database.create_all()
        logger.info("Tables created")

        if not seed_packages:
            return
        with database.session_scope() as db:
            if db.query(PointPackage.id).first() is not None:
                logger.info("Point packages already exist, skipping seed")
                return
            for order, (name, points, price) in enumerate(DEFAULT_PACKAGES):
                db.add(
                    PointPackage(
                        name=name,
                        points=points,
                        price=price,
                        is_active=True,
                        display_order=order,
                    )
                )
            logger.info(f"Seeded {len(DEFAULT_PACKAGES)} point packages")
    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")
        raise
    finally:
        database.dispose()


if __name__ == "__main__":
    setup_logging()
    init_db()
