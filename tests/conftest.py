import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sendrec_media.common.db import Base
from sendrec_media.common.ledger import VideoLedger
from sendrec_media.common.models import Video, VideoStatus

from .fakes import FakeStore


@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def ledger(session_factory):
    return VideoLedger(session_factory)


@pytest.fixture
def make_video(session_factory):
    def _make(**fields):
        fields.setdefault("status", VideoStatus.ready)
        fields.setdefault("file_key", "recordings/u1/abc.webm")
        fields.setdefault("content_type", "video/webm")
        fields.setdefault("duration", 30)
        with session_factory() as db:
            video = Video(**fields)
            db.add(video)
            db.commit()
            return video.id
    return _make


@pytest.fixture
def store():
    return FakeStore()
