from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

from config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from database import get_db, to_object_id
from schemas import Role, UserOut

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def public_user(user: dict) -> UserOut:
    return UserOut(id=str(user["_id"]), username=user.get("username"), email=user.get("email"), role=user.get("role", Role.USER.value))


def create_access_token(user: dict, expires_delta: Optional[timedelta] = None):
    to_encode = {"sub": str(user["_id"]), "email": user.get("email"), "role": user.get("role", Role.USER.value)}
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def get_current_user(token: str = Depends(oauth2_scheme), db: Database = Depends(get_db)) -> UserOut:
    # A deleted account and a bad token look the same to the client.
    credentials_exception = HTTPException(
        status_code=401,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception
    user_oid = to_object_id(user_id)
    user = db["user"].find_one({"_id": user_oid}) if user_oid else None
    if not user:
        raise credentials_exception
    return public_user(user)


def require_role(*roles: Role):
    allowed = {Role(r).value for r in roles}

    def role_dep(current: UserOut = Depends(get_current_user)) -> UserOut:
        if Role(current.role).value not in allowed:
            raise HTTPException(status_code=403, detail="You don't have permission to perform this action")
        return current
    return role_dep


require_admin = require_role(Role.ADMIN)
