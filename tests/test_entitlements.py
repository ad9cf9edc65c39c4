import threading
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

import entitlements as ent
from db import Base, Subscription, ModuleQuestion


@pytest.fixture
def fresh_user(db):
    ent.init_entitlements(db, 42)
    db.commit()
    return 42


def test_consume_question_stops_at_zero(db, fresh_user):
    assert [ent.consume_question(db, fresh_user, "career") for _ in range(4)] == [True, True, True, False]
    db.commit()
    assert ent.questions_remaining(db, fresh_user, "career") == 0
    assert ent.questions_remaining(db, fresh_user, "kundli") == 3


@pytest.fixture
def file_engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'quota.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    # let SQLAlchemy own BEGIN so writers queue on the busy timeout
    @event.listens_for(eng, "connect")
    def _no_driver_begin(dbapi_conn, _):
        dbapi_conn.isolation_level = None

    @event.listens_for(eng, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


def test_consume_question_concurrent_requests(file_engine):
    Session = sessionmaker(bind=file_engine, autoflush=False, autocommit=False)
    with Session() as s:
        ent.init_entitlements(s, 42)
        s.commit()

    workers = 8
    barrier = threading.Barrier(workers)
    results, errors = [], []
    lock = threading.Lock()

    def worker():
        s = Session()
        try:
            barrier.wait()
            ok = ent.consume_question(s, 42, "career")
            s.commit()
            with lock:
                results.append(ok)
        except Exception as e:
            with lock:
                errors.append(e)
        finally:
            s.close()

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert errors == []
    assert len(results) == workers
    assert sum(results) == 3
    with Session() as s:
        assert ent.questions_remaining(s, 42, "career") == 0
        assert ent.questions_remaining(s, 42, "kundli") == 3


def test_consume_question_missing_row(db):
    assert ent.consume_question(db, 7, "career") is False


def test_grant_module_unlimited_only_touches_that_module(db, fresh_user):
    ent.grant_module_unlimited(db, fresh_user, "gemstone")
    db.commit()
    rows = {r.module: r for r in db.query(ModuleQuestion).filter(ModuleQuestion.user_id == fresh_user)}
    assert rows["gemstone"].questions_remaining == ent.UNLIMITED_SENTINEL
    assert rows["gemstone"].is_premium is True
    assert all(r.questions_remaining == 3 and not r.is_premium for m, r in rows.items() if m != "gemstone")


@pytest.mark.parametrize("module,plan,expected", [
    ("all", "premium", 499),
    ("all", "annual", 4999),
    ("all", None, None),
    ("career", None, 499),
    ("career", "module", 499),
    ("career", "annual", None),
    ("astronomy", None, None),
])
def test_price_for(module, plan, expected):
    assert ent.price_for(module, plan) == expected


def test_plan_for_amount():
    assert ent.plan_for_amount(4999) == "annual"
    assert ent.plan_for_amount(499) == "premium"


def test_add_months_clamps_to_month_end():
    assert ent.add_months(datetime(2025, 1, 31), 1) == datetime(2025, 2, 28)
    assert ent.add_months(datetime(2024, 2, 29), 12) == datetime(2025, 2, 28)
    assert ent.add_months(datetime(2025, 12, 15), 1) == datetime(2026, 1, 15)


def test_activate_subscription_upserts(db, fresh_user):
    now = datetime(2025, 3, 10, 12, 0)
    ent.activate_subscription(db, fresh_user, "annual", now=now)
    db.commit()
    subs = db.query(Subscription).filter(Subscription.user_id == fresh_user).all()
    assert len(subs) == 1
    assert subs[0].plan == "annual"
    assert subs[0].start_date == now
    assert subs[0].end_date == datetime(2026, 3, 10, 12, 0)


def test_has_premium_subscription_is_plan_only():
    now = datetime(2025, 6, 1)
    assert ent.has_premium_subscription(None) is False
    assert ent.has_premium_subscription(Subscription(plan="free", is_active=True)) is False
    assert ent.has_premium_subscription(Subscription(plan="premium", is_active=True)) is True
    lapsed = Subscription(plan="annual", is_active=True, end_date=now - timedelta(days=1))
    assert ent.has_premium_subscription(lapsed) is True


def test_module_status_for_subscriber(db, fresh_user):
    ent.activate_subscription(db, fresh_user, "premium")
    db.commit()
    status = ent.module_status(db, fresh_user)
    assert status["subscription"]["plan"] == "premium"
    assert status["subscription"]["isActive"] is True
    assert status["modules"]["kundli"] == {"questionsRemaining": "unlimited", "isPremium": True}
