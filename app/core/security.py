import uuid
from typing import Literal
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import BaseModel
from app.core.config import settings

http_bearer = HTTPBearer(auto_error=False)

Role = Literal["ADMIN", "DOCTOR", "PATIENT"]

class Principal(BaseModel):
    user_id: uuid.UUID
    email: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"

def _decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG], audience=settings.REQUIRED_AUDIENCE)
        return payload
    except JWTError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}")

async def get_principal(creds: HTTPAuthorizationCredentials | None = Depends(http_bearer)) -> Principal:
    # In local dev, allow a missing token and act as an admin
    if creds is None and settings.ENV == "local":
        return Principal(user_id=uuid.uuid4(), email="admin@localhost", role="ADMIN")
    if creds is None:
        raise HTTPException(status_code=401, detail="Missing token")

    data = _decode_token(creds.credentials)
    try:
        user_id = uuid.UUID(str(data.get("sub") or data.get("user_id")))
        return Principal(user_id=user_id, email=data["email"], role=str(data.get("role", "")).upper())
    except (KeyError, ValueError) as e:
        raise HTTPException(status_code=401, detail=f"Invalid token claims: {e}")

def require_roles(*roles: Role):
    def dep(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(status_code=403, detail="Insufficient role")
        return principal
    return dep
