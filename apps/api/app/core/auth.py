from dataclasses import dataclass

from fastapi import HTTPException, status
from jose import JWTError, jwt
from passlib.context import CryptContext
from starlette.requests import Request

from app.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    claims: dict


def _unauthenticated(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        raise _unauthenticated()

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise _unauthenticated("Invalid token")

    subject = payload.get("sub")
    if subject is None or str(subject).strip() == "":
        raise _unauthenticated("Invalid token")

    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = str(subject)
    return AuthUser(sub=str(subject), claims=payload)


def issue_token(user_id: int | str, **extra_claims: object) -> str:
    settings = get_settings()
    claims: dict[str, object] = {"sub": str(user_id)}
    claims.update(extra_claims)
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)
