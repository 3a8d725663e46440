from pydantic import ConfigDict, EmailStr
from sqlmodel import Field, SQLModel


class UserBase(SQLModel):
    model_config = ConfigDict(extra="forbid")
    firstname: str = Field(min_length=1, max_length=255)
    lastname: str = Field(min_length=1, max_length=255)
    email: EmailStr = Field(unique=True, max_length=255)
    phone_number: str | None = Field(default=None, max_length=255)


class RegisterFormRequest(SQLModel):
    firstname: str = Field(min_length=1, max_length=255)
    lastname: str = Field(min_length=1, max_length=255)
    phone_number: str | None = None


class UserRead(UserBase):
    id: int
    is_staff: bool = False
