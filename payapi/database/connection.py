from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from payapi.config import Settings


def build_engine(settings: Settings) -> Engine:
    url = settings.database_url
    if url.startswith("sqlite"):
        # 인메모리 sqlite 는 커넥션 하나를 공유해야 테이블이 유지됨
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )

    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,  # 연결 유효성 검사
        pool_recycle=3600,  # 1시간마다 연결 재생성
        echo=settings.DEBUG and settings.ENVIRONMENT == "development",
    )


class Database:
    """
    프로세스 시작 시 한 번 생성되어 컨테이너를 통해 공유되는 DB 핸들

    engine 과 sessionmaker 를 함께 보관하며, 요청마다 session() 으로
    짧은 수명의 Session 을 만든다.
    """

    def __init__(self, settings: Settings = None, engine: Engine = None):
        if engine is None:
            engine = build_engine(settings)
        self.engine = engine
        # expire_on_commit=False: commit 이후에도 응답 직렬화 시 속성 접근 가능
        self.session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self.engine,
            expire_on_commit=False,
        )

    def session(self) -> Session:
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """컨텍스트 매니저를 사용한 데이터베이스 세션 관리 (배치/스크립트용)"""
        db = self.session()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def create_all(self) -> None:
        from payapi.models.registry import Base

        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()
