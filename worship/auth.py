"""Authentication related routes and helpers."""

import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from fastapi_limiter.depends import RateLimiter
from jose import JWTError, jwt

from . import schemas
from .core import get_settings
from .deps import get_storage
from .security import verify_password
from .storage import Storage

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")
router = APIRouter(prefix="/auth", tags=["auth"])
settings = get_settings()


def create_access_token(
    data: dict, expires_delta: timedelta | None = None, scope: str = "access"
) -> str:
    """Create a signed JWT access token."""
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.utcnow() + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire, "scope": scope})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_refresh_token(data: dict) -> str:
    """Create a JWT refresh token with a longer lifetime."""
    settings = get_settings()
    return create_access_token(
        data,
        expires_delta=timedelta(minutes=settings.REFRESH_TOKEN_EXPIRE_MINUTES),
        scope="refresh",
    )


def issue_tokens(user: schemas.User) -> schemas.Token:
    """Build an access/refresh token pair for the user."""
    return schemas.Token(
        access_token=create_access_token({"sub": user.username}),
        refresh_token=create_refresh_token({"sub": user.username}),
    )


def get_current_user(
    token: str = Depends(oauth2_scheme), storage: Storage = Depends(get_storage)
) -> schemas.User:
    """Dependency that returns the authenticated user from a JWT token."""

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(
            token, get_settings().SECRET_KEY, algorithms=[get_settings().ALGORITHM]
        )
        username: str | None = payload.get("sub")
        scope = payload.get("scope", "access")
        if username is None or scope != "access":
            raise credentials_exception
        token_data = schemas.TokenData(sub=username, scope=scope)
    except JWTError:
        raise credentials_exception
    user = storage.get_user_by_username(token_data.sub)
    if user is None:
        raise credentials_exception
    return user


@router.post(
    "/register", response_model=schemas.UserOut, status_code=status.HTTP_201_CREATED
)
def register(user_in: schemas.UserCreate, storage: Storage = Depends(get_storage)):
    """Register a new user. A taken username or e-mail answers 409."""

    user = storage.create_user(user_in.model_copy(update={"role": "member"}))
    logger.info("Registered user %s", user.username)
    return user


@router.post(
    "/login",
    response_model=schemas.Token,
    dependencies=[
        Depends(
            RateLimiter(
                times=settings.RATE_LIMIT_TIMES, seconds=settings.RATE_LIMIT_SECONDS
            )
        )
    ],
)
def login_for_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    storage: Storage = Depends(get_storage),
):
    """Authenticate user and return access/refresh token pair."""

    user = storage.get_user_by_username(form_data.username)
    if not user or not verify_password(form_data.password, user.hashed_password):
        logger.warning("Failed login for %s", form_data.username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials"
        )
    return issue_tokens(user)


@router.post("/refresh", response_model=schemas.Token)
def refresh_tokens(
    payload: schemas.TokenRefresh, storage: Storage = Depends(get_storage)
):
    """Issue a new pair of tokens based on a refresh token."""

    try:
        token_data = jwt.decode(
            payload.refresh_token,
            get_settings().SECRET_KEY,
            algorithms=[get_settings().ALGORITHM],
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token"
        )

    if token_data.get("scope") != "refresh":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token scope"
        )
    user = storage.get_user_by_username(token_data.get("sub") or "")
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="User not found"
        )
    return issue_tokens(user)


@router.get("/user", response_model=schemas.UserOut)
def read_session_user(current_user: schemas.User = Depends(get_current_user)):
    """Return the user the bearer token belongs to."""
    return current_user
