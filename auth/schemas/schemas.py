# schemas.py
from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from ..core.enums import UserRole, UserStatus, VehicleType

class UserBase(BaseModel):
    phone_number: str = Field(..., max_length=20, description="手机号")
    email: Optional[EmailStr] = Field(None, max_length=100, description="邮箱")
    username: Optional[str] = Field(None, max_length=50, description="用户名")
    nickname: Optional[str] = Field(None, max_length=50, description="昵称")
    model_config = ConfigDict(from_attributes=True)

class UserCreate(UserBase):
    password: str = Field(..., min_length=8, description="密码 (明文)")

class UserUpdate(BaseModel):
    email: Optional[EmailStr] = Field(None, max_length=100, description="邮箱")
    username: Optional[str] = Field(None, max_length=50, description="用户名")
    nickname: Optional[str] = Field(None, max_length=50, description="昵称")

class AdminUserUpdate(BaseModel):
    nickname: Optional[str] = Field(None, max_length=50, description="昵称")
    role: Optional[UserRole] = Field(None, description="用户角色")
    status: Optional[UserStatus] = Field(None, description="用户状态")
    new_password: Optional[str] = Field(None, min_length=8, description="新密码")

class UserRead(UserBase):
    id: int
    role: UserRole
    status: UserStatus
    last_login_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

class PlateBrief(BaseModel):
    license_plate: str
    vehicle_type: VehicleType
    is_default: bool
    model_config = ConfigDict(from_attributes=True)

class UserProfileRead(UserRead):
    """个人中心：基本信息 + 已绑定车牌 + 钱包余额"""
    license_plates: List[PlateBrief] = []
    balance: Decimal

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"

class PasswordChange(BaseModel):
    current_password: str = Field(..., description="当前密码")
    new_password: str = Field(..., min_length=8, description="新密码")

class PaginatedResponse(BaseModel):
    total: int
    skip: int
    limit: int

class UserListResponse(PaginatedResponse):
    items: List[UserRead]
