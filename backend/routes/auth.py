"""
BrokerDesk - Routes Auth
Bearer resolution (admin JWT or Firebase ID token), admin login, email OTP.
"""

from dataclasses import asdict

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from config import hash_password
from models.auth import AdminLogin, OtpRequest, OtpVerify, Principal, InternalPrincipal, ExternalPrincipal
from services.otp import issue_otp, verify_otp
from services.repositories import UserRepository
from services.security import AuthenticationFailed, create_admin_token, resolve_principal

router = APIRouter(prefix="/auth", tags=["Auth"])
security = HTTPBearer(auto_error=False)


# ==================== HELPERS ====================

def get_user_repository() -> UserRepository:
    return UserRepository()


async def get_principal(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Principal:
    """Resolve the caller, whichever scheme issued the token."""
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        return await resolve_principal(credentials.credentials)
    except AuthenticationFailed as e:
        raise HTTPException(status_code=401, detail=str(e))


async def require_internal_admin(principal: Principal = Depends(get_principal)) -> InternalPrincipal:
    """Admin JWT with role admin."""
    if not isinstance(principal, InternalPrincipal) or principal.role != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return principal


async def require_external_user(principal: Principal = Depends(get_principal)) -> ExternalPrincipal:
    """Firebase-authenticated customer."""
    if not isinstance(principal, ExternalPrincipal):
        raise HTTPException(status_code=403, detail="Customer account required")
    return principal


# ==================== ADMIN LOGIN ====================

@router.post("/admin/login")
async def admin_login(data: AdminLogin, users: UserRepository = Depends(get_user_repository)):
    user = await users.find_by_email(data.email)

    if not user or user.get("password") != hash_password(data.password):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")

    return {
        "success": True,
        "token": create_admin_token(user),
        "user": {
            "id": user["id"],
            "email": user.get("email", ""),
            "name": user.get("name", ""),
            "role": user["role"],
        }
    }


@router.get("/me")
async def me(principal: Principal = Depends(get_principal)):
    return {"success": True, "principal": asdict(principal)}


# ==================== OTP ====================

@router.post("/send-otp")
async def send_otp(data: OtpRequest):
    await issue_otp(data.email, data.name or "")
    return {"success": True, "message": "Verification code sent"}


@router.post("/verify-otp")
async def check_otp(data: OtpVerify):
    entry = await verify_otp(data.email, data.otp)
    if not entry:
        raise HTTPException(status_code=400, detail="Invalid or expired code")
    return {"success": True, "message": "Email verified", "email": entry["email"]}
