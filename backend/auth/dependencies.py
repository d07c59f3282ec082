import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.auth import jwt_handler
from backend.database import SessionLocal
from backend.models.user import User
from backend.scheduling.policy import Actor

security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> User:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    email = payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email).first()
    finally:
        db.close()
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def actor_from_user(user: User) -> Actor:
    return Actor(
        user_id=user.id,
        role=(user.role or "patient").strip().lower(),
        provider_id=user.provider_id,
        resource_id=user.resource_id,
    )


def get_current_actor(current_user: User = Depends(get_current_user)) -> Actor:
    return actor_from_user(current_user)
