# routers/users.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from ..schemas import schemas
from ..models import user as user_model
from ..services.auth_service import get_current_user, update_user_profile, change_password
from ..database import get_db
from parking.services import list_vehicles
from wallet.services import get_balance

router = APIRouter(
    prefix="/users",
    tags=["Users"],
    responses={404: {"description": "Not found"}},
)

@router.get("/me", response_model=schemas.UserRead)
def read_users_me(current_user: user_model.User = Depends(get_current_user)):
    return current_user

@router.get("/me/profile", response_model=schemas.UserProfileRead)
def read_my_profile(db: Session = Depends(get_db), current_user: user_model.User = Depends(get_current_user)):
    base = schemas.UserRead.model_validate(current_user).model_dump()
    plates = [schemas.PlateBrief.model_validate(v) for v in list_vehicles(db, current_user.id, 0, 100)]
    return schemas.UserProfileRead(**base, license_plates=plates, balance=get_balance(db, current_user.id))

@router.patch("/me", response_model=schemas.UserRead)
def update_me(update: schemas.UserUpdate, db: Session = Depends(get_db), current_user: user_model.User = Depends(get_current_user)):
    return update_user_profile(db, current_user, update)

@router.post("/me/change-password")
def change_my_password(payload: schemas.PasswordChange, db: Session = Depends(get_db), current_user: user_model.User = Depends(get_current_user)):
    change_password(db, current_user, payload.current_password, payload.new_password)
    return {"detail": "密码修改成功"}
