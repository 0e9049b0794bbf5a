from pydantic import BaseModel, EmailStr, Field, field_validator

from trade_ledger.users.models import RoleEnum, UserStatusEnum


class UserRegistrationSchema(BaseModel):
    email: EmailStr
    password: str
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)

    @field_validator('password')
    def validate_password(cls, password):
        if len(password) < 8:
            raise ValueError('Password must be at least 8 characters')
        return password

class UserLoginSchema(BaseModel):
    email: EmailStr
    password: str
    remember: bool = False

class UserSchema(BaseModel):
    id: int
    email: str
    first_name: str
    last_name: str
    role: RoleEnum
    status: UserStatusEnum

class AuthResponseSchema(BaseModel):
    success: bool = True
    token: str
    user: UserSchema
