from fastapi import APIRouter, Depends

from backend.auth.dependencies import actor_from_user, get_current_user
from backend.models.user import User

router = APIRouter(tags=["auth"])


@router.get("/me")
def me(current_user: User = Depends(get_current_user)):
    actor = actor_from_user(current_user)
    return {
        "id": current_user.id,
        "email": current_user.email,
        "role": actor.role,
        "provider_id": current_user.provider_id,
        "resource_id": current_user.resource_id,
        "is_elevated": actor.is_elevated,
    }
