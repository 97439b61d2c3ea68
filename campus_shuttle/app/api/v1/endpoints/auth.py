"""
Authentication API endpoints.

Provides register, login, logout and user info endpoints for the mobile app.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from campus_shuttle.app.db.session import get_db
from campus_shuttle.app.models.driver import Driver
from campus_shuttle.app.models.user import User
from campus_shuttle.app.models.enums import UserRole
from campus_shuttle.app.schemas.auth import UserRegister, UserLogin, TokenResponse, UserResponse, LogoutResponse
from campus_shuttle.app.schemas.session import Session
from campus_shuttle.app.core.security import get_password_hash, verify_password
from campus_shuttle.app.core.jwt import create_access_token
from campus_shuttle.app.core.dependencies import get_current_session
from campus_shuttle.app.core.token_revocation import revoke_token
from campus_shuttle.app.services.audit import log_auth_event, AuditAction

router = APIRouter(prefix="/auth", tags=["Authentication"])


def client_ip(request: Request):
    return request.client.host if request.client else None


def issue_token(user: User, driver_id=None) -> TokenResponse:
    jwt_payload = {
        "sub": user.email,
        "user_id": user.id,
        "role": user.role.value,
        "driver_id": driver_id,
    }
    access_token = create_access_token(data=jwt_payload)

    return TokenResponse(
        access_token=access_token,
        token_type="bearer",
        user_id=user.id,
        email=user.email,
        full_name=user.full_name,
        role=user.role,
        driver_id=driver_id,
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserRegister,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """
    Register a new user.

    - ADMIN role cannot be created via API.
    - DRIVER accounts are created by an admin, who links them to a vehicle.
    """
    if user_data.role == UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin users cannot be registered via API"
        )
    if user_data.role == UserRole.DRIVER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Driver accounts are created by an administrator"
        )

    result = await db.execute(select(User).where(User.email == user_data.email))
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    new_user = User(
        email=user_data.email,
        full_name=user_data.full_name,
        phone=user_data.phone,
        hashed_password=get_password_hash(user_data.password),
        role=user_data.role,
        is_active=True,
    )

    db.add(new_user)
    await db.commit()
    await db.refresh(new_user)

    await log_auth_event(
        db=db,
        action=AuditAction.USER_CREATED,
        user_id=new_user.id,
        email=new_user.email,
        ip_address=client_ip(request),
        metadata={"role": new_user.role.value}
    )

    return issue_token(new_user)


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """
    Login user and return JWT token.

    Logs successful and failed login attempts for security monitoring.
    """
    result = await db.execute(select(User).where(User.email == credentials.email))
    user = result.scalar_one_or_none()

    if not user or not verify_password(credentials.password, user.hashed_password):
        await log_auth_event(
            db=db,
            action=AuditAction.LOGIN_FAILED,
            user_id=user.id if user else None,
            email=credentials.email,
            ip_address=client_ip(request),
            metadata={"reason": "Invalid password" if user else "User not found"}
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        await log_auth_event(
            db=db,
            action=AuditAction.LOGIN_FAILED,
            user_id=user.id,
            email=user.email,
            ip_address=client_ip(request),
            metadata={"reason": "Account is inactive"}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user account"
        )

    driver_id = None
    if user.role == UserRole.DRIVER:
        result = await db.execute(select(Driver.id).where(Driver.user_id == user.id))
        driver_id = result.scalar_one_or_none()

    token = issue_token(user, driver_id)

    await log_auth_event(
        db=db,
        action=AuditAction.LOGIN_SUCCESS,
        user_id=user.id,
        email=user.email,
        ip_address=client_ip(request),
    )

    return token


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db)
):
    """
    Get current authenticated user information.

    Requires valid JWT token in Authorization header.
    """
    user = await db.get(User, session.user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    return UserResponse.model_validate(user)


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    request: Request,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db)
):
    """Revoke the presented token so it cannot be used again."""
    revoked = await revoke_token(session.token, session.user_id)

    await log_auth_event(
        db=db,
        action=AuditAction.TOKEN_REVOKED,
        user_id=session.user_id,
        email=session.email,
        ip_address=client_ip(request),
        metadata={"revoked": revoked}
    )

    if not revoked:
        return LogoutResponse(success=False, message="Logged out locally; token could not be revoked")
    return LogoutResponse(success=True, message="Logged out")
