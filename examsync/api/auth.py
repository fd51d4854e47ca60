from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
from typing import List, Optional
from examsync.core.auth import create_token
from examsync.core.config import settings

router = APIRouter()

ROLES = {"user", "admin"}

class MockLogin(BaseModel):
    user_id: str = Field(min_length=1)
    roles: List[str] = ["user"]
    ttl_minutes: Optional[int] = Field(default=None, gt=0)

@router.post("/mock-login")
def mock_login(payload: MockLogin):
    """Development-only token mint for the user and admin roles."""
    if settings.ENVIRONMENT == "production":
        raise HTTPException(404, "Not found.")
    unknown = sorted(set(payload.roles) - ROLES)
    if unknown or not payload.roles:
        raise HTTPException(400, f"Unknown roles: {', '.join(unknown)}" if unknown else "At least one role is required.")
    ttl = payload.ttl_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
    token = create_token(payload.user_id, payload.roles, ttl)
    return {"access_token": token, "token_type": "bearer", "roles": payload.roles, "expires_in": ttl * 60}
