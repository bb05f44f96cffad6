# exam_engine/schemas/auth.py

from pydantic import BaseModel, EmailStr, ConfigDict


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    name: str
    roll_number: str | None = None


class UserPublic(BaseModel):

    id: int
    email: EmailStr
    name: str
    role: str
    roll_number: str | None = None

    model_config = ConfigDict(from_attributes=True)
