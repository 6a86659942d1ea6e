from typing import Iterator

from fastapi import Request
from sqlalchemy.orm import Session


def get_db(request: Request) -> Iterator[Session]:
    """요청 단위 세션 - 컨테이너의 Database 싱글턴에서 생성"""
    database = request.app.container.infrastructure.database()
    db = database.session()
    try:
        yield db
    except Exception:
        if db.in_transaction():
            db.rollback()
        raise
    finally:
        db.close()
