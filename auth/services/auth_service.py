# services/auth_service.py
import logging
from sqlalchemy.orm import Session
from datetime import datetime, timezone
from typing import Optional
from ..models import user as user_model
from ..schemas import schemas
from ..core.security import get_password_hash, verify_password, create_access_token, decode_access_token
from ..core.config import settings
from ..core.enums import UserRole, UserStatus
from fastapi.security import OAuth2PasswordBearer
from fastapi import Depends, HTTPException, status
from jose import JWTError
from ..database import get_db

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/login")

def get_user_by_phone(db: Session, phone_number: str) -> Optional[user_model.User]:
    return db.query(user_model.User).filter(user_model.User.phone_number == phone_number).first()

def get_user_by_email(db: Session, email: str) -> Optional[user_model.User]:
    return db.query(user_model.User).filter(user_model.User.email == email).first()

def get_user_by_username(db: Session, username: str) -> Optional[user_model.User]:
    return db.query(user_model.User).filter(
        (user_model.User.username == username) |
        (user_model.User.email == username) |
        (user_model.User.phone_number == username)
    ).first()

def create_user(db: Session, user: schemas.UserCreate, role: UserRole = UserRole.USER) -> user_model.User:
    db_user = user_model.User(
        phone_number=user.phone_number,
        email=user.email,
        username=user.username,
        nickname=user.nickname,
        password_hash=get_password_hash(user.password),
        role=role,
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    logger.info("user %s registered", db_user.id)
    return db_user

def authenticate_user(db: Session, username: str, password: str) -> Optional[user_model.User]:
    user = get_user_by_username(db, username)
    if not user:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user

def handle_successful_login(db: Session, user: user_model.User) -> str:
    user.last_login_at = datetime.now(timezone.utc)
    db.commit()
    return create_access_token(data={"sub": str(user.id), "role": user.role.value})

def update_user_profile(db: Session, user: user_model.User, update: schemas.UserUpdate) -> user_model.User:
    if update.email:
        exists = db.query(user_model.User).filter(user_model.User.email == update.email, user_model.User.id != user.id).first()
        if exists:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="邮箱已被占用")
        user.email = update.email
    if update.username:
        exists = db.query(user_model.User).filter(user_model.User.username == update.username, user_model.User.id != user.id).first()
        if exists:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="用户名已被占用")
        user.username = update.username
    if update.nickname is not None:
        user.nickname = update.nickname
    db.commit()
    db.refresh(user)
    return user

def change_password(db: Session, user: user_model.User, current_password: str, new_password: str):
    if not verify_password(current_password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="当前密码不正确")
    user.password_hash = get_password_hash(new_password)
    db.commit()

def ensure_admin_user(db: Session) -> Optional[user_model.User]:
    """Create or promote the bootstrap admin configured in settings."""
    if not settings.ADMIN_USERNAME or not settings.ADMIN_PASSWORD:
        return None
    u = get_user_by_username(db, settings.ADMIN_USERNAME)
    if not u:
        u = user_model.User(
            phone_number=settings.ADMIN_USERNAME,
            username=settings.ADMIN_USERNAME,
            nickname="管理员",
            password_hash=get_password_hash(settings.ADMIN_PASSWORD),
            role=UserRole.ADMIN,
        )
        db.add(u)
    else:
        u.role = UserRole.ADMIN
        u.status = UserStatus.ACTIVE
        u.password_hash = get_password_hash(settings.ADMIN_PASSWORD)
    db.commit()
    db.refresh(u)
    logger.info("bootstrap admin %s ready", u.id)
    return u

def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> user_model.User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="无法验证凭据",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_access_token(token)
        user_id_str: str = payload.get("sub")
        if user_id_str is None:
            raise credentials_exception
        user_id = int(user_id_str)
    except (JWTError, ValueError):
        raise credentials_exception
    user = db.query(user_model.User).filter(user_model.User.id == user_id).first()
    if user is None:
        raise credentials_exception
    if user.status != UserStatus.ACTIVE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="用户已被禁用")
    return user
