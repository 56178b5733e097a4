import os
import sys
from datetime import datetime, timezone
from decimal import Decimal

# 应用导入前必须配置好环境变量
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("EXPIRY_SWEEP_INTERVAL_SECONDS", "0")
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from auth.database import Base, get_db
from auth.models.user import User
from auth.core.enums import UserRole
from auth.core.security import get_password_hash
from parking.commands import Actor, CreateLotCommand
from parking.services import create_lot

# --- 测试数据库设置 ---
# 使用内存中的 SQLite 数据库进行测试
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False}, # SQLite 需要这个参数
    poolclass=StaticPool, # 使用静态连接池
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# 单元测试统一使用的固定时间
NOW = datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc)

# --- Pytest Fixtures ---
@pytest.fixture(scope="function")
def db_session():
    """
    为每个测试函数创建一个新的数据库会话和干净的表。
    """
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)

@pytest.fixture(scope="function")
def session_factory(db_session):
    return TestingSessionLocal

@pytest.fixture(scope="function")
def client(db_session):
    """
    创建一个 TestClient，并覆盖 get_db 依赖以使用测试数据库会话。
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            db_session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()

def _make_user(db, phone: str, role: UserRole = UserRole.USER) -> User:
    u = User(phone_number=phone, username=f"u{phone}", password_hash=get_password_hash("password123"), role=role)
    db.add(u)
    db.commit()
    db.refresh(u)
    return u

@pytest.fixture
def owner(db_session):
    return _make_user(db_session, "13800000001")

@pytest.fixture
def other_user(db_session):
    return _make_user(db_session, "13800000002")

@pytest.fixture
def admin_user(db_session):
    return _make_user(db_session, "19900000001", UserRole.ADMIN)

@pytest.fixture
def actor(owner):
    return Actor.of(owner)

@pytest.fixture
def other_actor(other_user):
    return Actor.of(other_user)

@pytest.fixture
def admin_actor(admin_user):
    return Actor.of(admin_user)

@pytest.fixture
def lot(db_session, admin_actor):
    """费率 10 元/小时、三个车位 A-001..A-003 的停车场。"""
    return create_lot(db_session, admin_actor, CreateLotCommand(
        name="测试停车场", address="测试路 1 号", hourly_rate=Decimal("10.00"), total_spaces=3,
    ))

# --- API helpers ---
def register_and_login(client, phone: str, password: str = "password123") -> dict:
    r = client.post("/api/v1/register", json={"phone_number": phone, "password": password})
    assert r.status_code == 201
    token = client.post("/api/v1/login", data={"username": phone, "password": password}).json()["access_token"]
    return {"Authorization": f"Bearer {token}"}

def admin_headers(client, db_session, phone: str = "19900000009", password: str = "adminpass1") -> dict:
    headers = register_and_login(client, phone, password)
    u = db_session.query(User).filter(User.phone_number == phone).first()
    u.role = UserRole.ADMIN
    db_session.commit()
    return headers
