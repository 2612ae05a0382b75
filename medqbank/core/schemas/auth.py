# medqbank/core/schemas/auth.py
from pydantic import BaseModel, EmailStr, Field, ConfigDict, field_validator
from typing import Optional
from datetime import datetime
import re


class PasswordComplexity:
    """Класс для проверки сложности пароля"""
    MIN_LENGTH = 10
    MAX_LENGTH = 64
    REQUIRE_UPPERCASE = True
    REQUIRE_LOWERCASE = True
    REQUIRE_DIGIT = True
    WEAK_PASSWORDS = {
        "password", "123456", "12345678", "qwerty", "abc123", "password1",
        "iloveyou", "1q2w3e4r", "admin", "welcome", "medecine", "azerty",
    }

    @classmethod
    def validate(cls, password: str) -> None:
        """Проверка сложности пароля"""
        errors = []

        if len(password) < cls.MIN_LENGTH:
            errors.append(f"Password must be at least {cls.MIN_LENGTH} characters long")
        if len(password) > cls.MAX_LENGTH:
            errors.append(f"Password must be at most {cls.MAX_LENGTH} characters long")
        if cls.REQUIRE_UPPERCASE and not any(c.isupper() for c in password):
            errors.append("Password must contain at least one uppercase letter")
        if cls.REQUIRE_LOWERCASE and not any(c.islower() for c in password):
            errors.append("Password must contain at least one lowercase letter")
        if cls.REQUIRE_DIGIT and not any(c.isdigit() for c in password):
            errors.append("Password must contain at least one digit")
        if password.lower() in cls.WEAK_PASSWORDS:
            errors.append("Password is too common and easily guessable")

        if errors:
            raise ValueError("; ".join(errors))


DISPOSABLE_DOMAINS = {
    'tempmail.com', '10minutemail.com', 'guerrillamail.com',
    'mailinator.com', 'trashmail.com', 'fakeinbox.com', 'yopmail.com',
}


class UserCreate(BaseModel):
    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., description="User password")
    name: Optional[str] = Field(None, max_length=120)
    niveau_id: Optional[int] = Field(None, ge=1)

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        """Запрет одноразовых почтовых сервисов"""
        domain = v.split('@')[-1].lower()
        if domain in DISPOSABLE_DOMAINS:
            raise ValueError("Disposable email addresses are not allowed")
        if not re.match(r'^[\w\.\+-]+@[\w\.-]+\.\w+$', v):
            raise ValueError("Invalid email format")
        return v.lower()

    @field_validator('password')
    @classmethod
    def validate_password(cls, v):
        PasswordComplexity.validate(v)
        return v


class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Token expiration time in seconds")


class UserResponse(BaseModel):
    id: int
    email: str
    name: Optional[str] = None
    phone: Optional[str] = None
    role: str
    status: str
    niveau_id: Optional[int] = None
    semester_id: Optional[int] = None
    has_active_subscription: bool = False
    subscription_expires_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class UserListResponse(BaseModel):
    items: list[UserResponse]
    total: int


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(..., description="Refresh token for getting new access token")


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=120)
    phone: Optional[str] = Field(None, max_length=32)
    semester_id: Optional[int] = Field(None, ge=1)


class PasswordChange(BaseModel):
    current_password: str
    new_password: str

    @field_validator('new_password')
    @classmethod
    def validate_password(cls, v):
        PasswordComplexity.validate(v)
        return v


class RoleUpdate(BaseModel):
    role: str = Field(..., pattern="^(student|maintainer|admin)$")


class StatusUpdate(BaseModel):
    status: str = Field(..., pattern="^(active|suspended)$")


class SubscriptionUpdate(BaseModel):
    active: bool
    expires_at: Optional[datetime] = None
