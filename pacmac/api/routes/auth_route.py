from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from pacmac.api.dependencies import get_async_session, get_user
from pacmac.core.logging import get_logger
from pacmac.models.user_model import User
from pacmac.schemas.user_schema import RegisterFormRequest, UserRead

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/register",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    summary="Register the authenticated user",
)
async def register_user(
    *,
    session: AsyncSession = Depends(get_async_session),
    user: dict = Depends(get_user),
    register_form: RegisterFormRequest,
):
    # the account is bound to the email of the verified token
    user_email = user.get("email")
    if not user_email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token does not carry an email address.",
        )

    db_user = await session.execute(select(User).where(User.email == user_email))
    db_user = db_user.scalar_one_or_none()

    if db_user is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Email '{user_email}' is already registered.",
        )

    new_user = User(
        firstname=register_form.firstname,
        lastname=register_form.lastname,
        email=user_email,
        phone_number=register_form.phone_number,
    )

    session.add(new_user)
    await session.commit()
    await session.refresh(new_user)

    logger.info("Registered user %s", new_user.id)
    return new_user
