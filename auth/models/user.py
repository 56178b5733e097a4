# /models/user.py
from sqlalchemy import Column, Integer, String, Enum, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..database import Base, UTCDateTime
from ..core.enums import UserRole, UserStatus

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    phone_number = Column(String(20), unique=True, index=True, nullable=False, comment="手机号")
    email = Column(String(100), unique=True, index=True, nullable=True, comment="邮箱")
    username = Column(String(50), unique=True, index=True, nullable=True, comment="用户名")
    password_hash = Column(String(255), nullable=False, comment="密码哈希 (盐值已包含在内)")
    role = Column(Enum(UserRole), default=UserRole.USER, nullable=False, comment="用户角色 (admin/user)")
    status = Column(Enum(UserStatus), default=UserStatus.ACTIVE, nullable=False, comment="用户状态")
    nickname = Column(String(50), nullable=True, comment="昵称")
    last_login_at = Column(UTCDateTime, nullable=True, comment="最后登录时间")
    created_at = Column(UTCDateTime, default=func.now(), nullable=False, comment="创建时间")
    updated_at = Column(UTCDateTime, default=func.now(), onupdate=func.now(), nullable=False, comment="更新时间")
    vehicles = relationship("Vehicle", back_populates="user", cascade="all, delete-orphan")
    __table_args__ = (
        Index('idx_users_phone_status', 'phone_number', 'status'),
        Index('idx_users_status_role', 'status', 'role'),
    )
