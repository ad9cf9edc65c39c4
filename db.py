# db.py
import os
from datetime import datetime
from sqlalchemy import (
    create_engine, Column, Integer, String, Text, Boolean, DateTime, JSON, UniqueConstraint
)
from sqlalchemy.orm import sessionmaker, declarative_base

# --- DB URL normalizer (Render/Heroku compatibility) -------------------------
def _normalize_db_url(url: str) -> str:
    # Heroku-style URLs use postgres://; SQLAlchemy expects postgresql://
    return url.replace("postgres://", "postgresql://", 1) if url.startswith("postgres://") else url

DATABASE_URL = _normalize_db_url(os.getenv("DATABASE_URL", "")) or "sqlite:///./jyotish.db"

# SQLite needs this flag for multi-threaded FastAPI usage
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, pool_pre_ping=True, connect_args=connect_args)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
Base = declarative_base()

# --- Models -------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(Text, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=True)
    birth_date = Column(String(50), nullable=True)
    birth_time = Column(String(50), nullable=True)
    birth_place = Column(Text, nullable=True)
    gender = Column(String(20), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

class ModuleQuestion(Base):
    __tablename__ = "module_questions"
    __table_args__ = (UniqueConstraint("user_id", "module", name="uq_module_questions_user_module"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    module = Column(String(50), nullable=False)
    questions_remaining = Column(Integer, nullable=False, default=3)
    is_premium = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

class Chat(Base):
    __tablename__ = "chats"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    module = Column(String(50), nullable=False)
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    module = Column(String(50), nullable=False)          # one of MODULES or "all"
    amount = Column(Integer, nullable=False)             # major units (rupees)
    currency = Column(String(10), default="INR")
    status = Column(String(50), nullable=False)          # created/captured
    payment_id = Column(String(255), nullable=True)      # order id until captured, then payment id
    order_id = Column(String(255), nullable=True, index=True)
    payment_details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, unique=True, nullable=False)
    plan = Column(String(50), nullable=False, default="free")  # free/premium/annual
    start_date = Column(DateTime, default=datetime.utcnow)
    end_date = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

# --- Helpers ------------------------------------------------------------------
def init_db():
    Base.metadata.create_all(bind=engine)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
