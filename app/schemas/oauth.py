from datetime import datetime

from pydantic import BaseModel, ConfigDict


class AuthorizeOut(BaseModel):
    authorization_url: str
    state: str


class OAuthAccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    provider: str
    email: str | None = None
    display_name: str | None = None
    picture: str | None = None
    connected_at: datetime


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    username: str
    full_name: str
    role: str
    avatar: str | None = None


class LoginOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut
    linked: bool = False


class TokenRefreshOut(BaseModel):
    provider: str
    access_token: str
