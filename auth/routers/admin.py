# routers/admin.py
import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import Optional
from ..models import user as user_model
from ..services.auth_service import get_current_user
from ..core.security import get_password_hash
from ..schemas import schemas
from ..database import get_db
from ..core.enums import UserRole, UserStatus
from sqlalchemy import desc

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    responses={404: {"description": "Not found"}},
)

def require_admin(current_user: user_model.User = Depends(get_current_user)):
    if current_user.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="需要管理员权限")
    return current_user

@router.get("/users", response_model=schemas.UserListResponse)
def get_users(
    skip: int = Query(0, ge=0, description="跳过的记录数"),
    limit: int = Query(10, ge=1, le=100, description="每页记录数"),
    search: Optional[str] = Query(None, description="搜索关键词（手机号、邮箱、用户名）"),
    status: Optional[UserStatus] = Query(None, description="用户状态"),
    role: Optional[UserRole] = Query(None, description="用户角色"),
    db: Session = Depends(get_db),
    current_user: user_model.User = Depends(require_admin)
):
    query = db.query(user_model.User)
    if search:
        query = query.filter(
            (user_model.User.phone_number.contains(search)) |
            (user_model.User.email.contains(search)) |
            (user_model.User.username.contains(search))
        )
    if status:
        query = query.filter(user_model.User.status == status)
    if role:
        query = query.filter(user_model.User.role == role)
    total = query.count()
    users = query.order_by(desc(user_model.User.created_at), desc(user_model.User.id)).offset(skip).limit(limit).all()
    return {"total": total, "items": users, "skip": skip, "limit": limit}

@router.get("/users/{user_id}", response_model=schemas.UserRead)
def get_user_detail(user_id: int, db: Session = Depends(get_db), current_user: user_model.User = Depends(require_admin)):
    user = db.query(user_model.User).filter(user_model.User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="用户不存在")
    return user

@router.put("/users/{user_id}/status")
def update_user_status(user_id: int, status: UserStatus, db: Session = Depends(get_db), current_user: user_model.User = Depends(require_admin)):
    user = db.query(user_model.User).filter(user_model.User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="用户不存在")
    if user.id == current_user.id and status != UserStatus.ACTIVE:
        raise HTTPException(status_code=400, detail="不能禁用当前登录的管理员")
    user.status = status
    db.commit()
    logger.info("admin %s set user %s status %s", current_user.id, user.id, status.value)
    return {"message": "用户状态更新成功"}

@router.patch("/users/{user_id}", response_model=schemas.UserRead)
def admin_update_user(user_id: int, payload: schemas.AdminUserUpdate, db: Session = Depends(get_db), current_user: user_model.User = Depends(require_admin)):
    u = db.query(user_model.User).filter(user_model.User.id == user_id).first()
    if not u:
        raise HTTPException(status_code=404, detail="用户不存在")
    if payload.nickname is not None:
        u.nickname = payload.nickname
    if payload.role is not None:
        u.role = payload.role
    if payload.status is not None:
        u.status = payload.status
    if payload.new_password:
        u.password_hash = get_password_hash(payload.new_password)
    db.commit()
    db.refresh(u)
    logger.info("admin %s updated user %s", current_user.id, u.id)
    return u
