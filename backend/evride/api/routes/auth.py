from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ...api import deps
from ...db import get_db
from ...models import RoleEnum, User
from ...schemas import LoginRequest, RegisterRequest, Token, UserSummary
from ...security import create_access_token, hash_password, verify_password

router = APIRouter(prefix="/auth", tags=["auth"])


def _summary(user: User) -> UserSummary:
    return UserSummary(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role.value,
        reward_points=user.reward_points,
        wallet_balance=user.wallet_balance,
    )


@router.post("/login", response_model=Token)
def login(payload: LoginRequest, db: Session = Depends(get_db)) -> Token:
    user = db.query(User).filter(User.email == payload.email).first()
    if user is None or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    token = create_access_token(user_id=user.id, role=user.role.value)
    return Token(access_token=token)


@router.post("/register", response_model=Token, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db: Session = Depends(get_db)) -> Token:
    email = payload.email.strip().lower()
    if db.query(User).filter(User.email == email).first() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")
    user = User(
        email=email,
        name=payload.name,
        password_hash=hash_password(payload.password),
        role=RoleEnum.user,
    )
    db.add(user)
    db.commit()
    return Token(access_token=create_access_token(user_id=user.id, role=user.role.value))


@router.get("/me", response_model=UserSummary)
def me(user: User = Depends(deps.get_current_user)) -> UserSummary:
    return _summary(user)
