import os

os.environ.setdefault("SKILLSWAP_DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta  # noqa: E402
from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from skillswap.core.database import Base  # noqa: E402
from skillswap.models import Skill, User, UserSkill  # noqa: E402
from skillswap.services import ledger_service  # noqa: E402
from skillswap.services.escrow_service import SessionEscrowEngine  # noqa: E402
from skillswap.services.expiration_service import CreditExpirationSweeper, DormancyPolicy  # noqa: E402
from skillswap.services.pricing import EscrowPolicy  # noqa: E402

NOW = datetime(2025, 6, 15, 12, 0, 0)


class RecordingSink:
    """Collects delivered notifications; optionally fails on delivery."""

    def __init__(self):
        self.delivered = []
        self.fail = False

    def notify(self, user_id, kind, payload):
        if self.fail:
            raise RuntimeError("notification backend unavailable")
        self.delivered.append((user_id, kind, dict(payload)))

    def of_kind(self, kind):
        return [(user_id, payload) for user_id, delivered_kind, payload in self.delivered if delivered_kind == kind]


class RecordingVideo:
    def __init__(self):
        self.provisioned = []
        self.released = []
        self.fail_release = False

    def provision(self, session):
        link = f"https://meet.test/{len(self.provisioned) + 1}"
        self.provisioned.append(link)
        return link

    def deprovision(self, meeting_ref):
        if self.fail_release:
            raise RuntimeError("video provider down")
        self.released.append(meeting_ref)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def db_engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'skillswap.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def video():
    return RecordingVideo()


@pytest.fixture
def policy():
    return EscrowPolicy()


@pytest.fixture
def escrow(policy, sink, video):
    return SessionEscrowEngine(policy, notifier=sink, video=video)


@pytest.fixture
def sweeper(sink):
    return CreditExpirationSweeper(DormancyPolicy(), notifier=sink)


@pytest.fixture
def make_user(db, sink, now):
    """Create a committed user whose opening balance is funded through the ledger."""

    def _make_user(name="user", *, credits=0, rating=0.0, completed_sessions=0, last_active=None):
        user = User(
            email=f"{name}-{uuid4().hex[:8]}@example.com",
            display_name=name.title(),
            rating=rating,
            completed_sessions=completed_sessions,
            last_active=last_active or now - timedelta(days=1),
            created_at=now - timedelta(days=400),
            updated_at=now - timedelta(days=400),
        )
        db.add(user)
        db.flush()
        if credits:
            ledger_service.award_bonus_credits(
                db,
                user_id=user.user_id,
                amount=credits,
                description="Opening balance",
                notifier=sink,
                now=now - timedelta(days=30),
            )
        db.commit()
        sink.delivered.clear()
        return user

    return _make_user


@pytest.fixture
def skill(db):
    record = Skill(name="Python", category="Programming")
    db.add(record)
    db.commit()
    return record


@pytest.fixture
def teacher(db, make_user, skill):
    user = make_user("teacher")
    db.add(UserSkill(user_id=user.user_id, skill_id=skill.skill_id, can_teach=True))
    db.commit()
    return user


@pytest.fixture
def premium_teacher(db, make_user, skill):
    user = make_user("premium", rating=4.9, completed_sessions=60)
    db.add(UserSkill(user_id=user.user_id, skill_id=skill.skill_id, can_teach=True))
    db.commit()
    return user


@pytest.fixture
def learner(make_user):
    return make_user("learner", credits=100)


@pytest.fixture
def book(db, escrow, teacher, learner, skill, now):
    """Book a session the way the booking route does: commit, then attach a room."""

    def _book(*, teacher_user=None, learner_user=None, scheduled_at=None, duration=60, title="Intro to Python"):
        record = escrow.create_session(
            db,
            teacher_id=(teacher_user or teacher).user_id,
            learner_id=(learner_user or learner).user_id,
            skill_id=skill.skill_id,
            title=title,
            scheduled_at=scheduled_at or now + timedelta(days=3),
            duration=duration,
            now=now,
        )
        db.commit()
        escrow.attach_video_room(db, record.session_id)
        db.commit()
        return record

    return _book


@pytest.fixture
def assert_ledger_consistent(db):
    """Check that a user's balance equals the signed sum of their transactions."""

    def _check(user_id):
        stats = ledger_service.get_statistics(db, user_id)
        assert stats.current_balance == stats.net_total
        assert stats.current_balance >= 0
        return stats.current_balance

    return _check
