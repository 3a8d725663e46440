from fastapi import APIRouter, Depends

from pacmac.api.dependencies import get_current_user, is_staff
from pacmac.models.user_model import User
from pacmac.schemas.user_schema import UserRead

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserRead)
async def get_me(*, current_user: User = Depends(get_current_user)):
    return UserRead(
        id=current_user.id,
        firstname=current_user.firstname,
        lastname=current_user.lastname,
        email=current_user.email,
        phone_number=current_user.phone_number,
        is_staff=is_staff(current_user),
    )
