# /routers/auth_service.py
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session
from ..schemas import schemas
from ..services import auth_service
from ..database import get_db

router = APIRouter(tags=["Authentication"])

@router.post("/register", response_model=schemas.UserRead, status_code=status.HTTP_201_CREATED)
def register_user(user_create: schemas.UserCreate, db: Session = Depends(get_db)):
    if auth_service.get_user_by_phone(db, user_create.phone_number):
        raise HTTPException(status_code=400, detail="该手机号已被注册")
    if user_create.email and auth_service.get_user_by_email(db, user_create.email):
        raise HTTPException(status_code=400, detail="该邮箱已被注册")
    if user_create.username and auth_service.get_user_by_username(db, user_create.username):
        raise HTTPException(status_code=400, detail="该用户名已被注册")
    return auth_service.create_user(db, user_create)

@router.post("/login", response_model=schemas.Token)
def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    db_user = auth_service.authenticate_user(db, form_data.username, form_data.password)
    if not db_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="用户名或密码不正确",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token = auth_service.handle_successful_login(db, db_user)
    return {"access_token": access_token, "token_type": "bearer"}
