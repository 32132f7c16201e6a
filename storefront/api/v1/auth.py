from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import EmailStr

from storefront.config import settings
from storefront.dependencies import get_auth_service, get_current_user
from storefront.models.user import User
from storefront.schemas.auth import (
    RegisterRequest, VerifyOTPRequest, ResendOTPRequest, LoginRequest,
    ForgotPasswordRequest, ResetPasswordRequest, normalize_email,
    AuthPayload, CooldownStatus, ResetVerificationStatus, UserOut,
)
from storefront.schemas.common import ErrorResponse, SuccessResponse, success_response
from storefront.services.auth_service import AuthService, IssuedSession
from storefront.services.otp_vault import OTPPurpose
from storefront.services.user_directory import serialize_user
from storefront.utils.cookies import clear_refresh_cookie, read_refresh_cookie, set_refresh_cookie

router = APIRouter(
    prefix="/auth",
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)

GENERIC_RESET_ACK = "If an account with that email exists, a password reset OTP has been sent."


def _session_body(issued: IssuedSession) -> dict:
    return {
        "user":        serialize_user(issued.user),
        "accessToken": issued.access_token,
        "tokenType":   "Bearer",
        "expiresIn":   settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    }


# ─── POST /auth/register ──────────────────────────────────────────────────────
@router.post(
    "/register",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start registration and send an email verification OTP",
    response_model=SuccessResponse,
)
async def register(data: RegisterRequest, auth: AuthService = Depends(get_auth_service)):
    """
    Stage a registration for 30 minutes and email a 6-digit OTP.
    - Email must not belong to an existing account.
    - Password minimum 8 characters, 1 lowercase, 1 uppercase, 1 number.
    - Sellers must provide a phone number.
    """
    await auth.register(data)
    return success_response(
        "Registration initiated. Please check your email for verification OTP.", None
    )


# ─── POST /auth/verify-otp ────────────────────────────────────────────────────
@router.post(
    "/verify-otp",
    status_code=status.HTTP_201_CREATED,
    summary="Verify the registration OTP and create the account",
    response_model=SuccessResponse[UserOut],
)
async def verify_otp(data: VerifyOTPRequest, auth: AuthService = Depends(get_auth_service)):
    user = await auth.verify_otp(data.email, data.otp)
    return success_response("Email verified successfully. Account created!", serialize_user(user))


# ─── POST /auth/resend-otp ────────────────────────────────────────────────────
@router.post(
    "/resend-otp",
    status_code=status.HTTP_200_OK,
    summary="Resend the registration OTP",
    response_model=SuccessResponse,
)
async def resend_otp(data: ResendOTPRequest, auth: AuthService = Depends(get_auth_service)):
    await auth.resend_otp(data.email)
    return success_response("OTP resent successfully. Please check your email.", None)


# ─── GET /auth/otp-cooldown ───────────────────────────────────────────────────
@router.get(
    "/otp-cooldown",
    status_code=status.HTTP_200_OK,
    summary="Seconds until another OTP may be requested",
    response_model=SuccessResponse[CooldownStatus],
)
async def otp_cooldown_status(
    email: EmailStr = Query(...),
    purpose: OTPPurpose = Query(OTPPurpose.EMAIL_VERIFICATION),
    auth: AuthService = Depends(get_auth_service),
):
    result = await auth.otp_cooldown_status(normalize_email(email), purpose)
    return success_response("Cooldown status retrieved", result)


# ─── POST /auth/login ─────────────────────────────────────────────────────────
@router.post(
    "/login",
    status_code=status.HTTP_200_OK,
    summary="Login; access token in body, refresh token in HttpOnly cookie",
    response_model=SuccessResponse[AuthPayload],
)
async def login(data: LoginRequest, response: Response, auth: AuthService = Depends(get_auth_service)):
    """
    Authenticate user.
    Returns accessToken (15 min) in the body and sets the refreshToken cookie (30 days).
    """
    issued = await auth.login(data.email, data.password)
    set_refresh_cookie(response, issued.refresh_token)
    return success_response("Login successful", _session_body(issued))


# ─── POST /auth/refresh ───────────────────────────────────────────────────────
@router.post(
    "/refresh",
    status_code=status.HTTP_200_OK,
    summary="Rotate the refresh cookie and get a new access token",
    response_model=SuccessResponse[AuthPayload],
)
async def refresh_token(request: Request, response: Response, auth: AuthService = Depends(get_auth_service)):
    issued = await auth.refresh(read_refresh_cookie(request))
    set_refresh_cookie(response, issued.refresh_token)
    return success_response("Token refreshed", _session_body(issued))


# ─── POST /auth/logout ────────────────────────────────────────────────────────
@router.post(
    "/logout",
    status_code=status.HTTP_200_OK,
    summary="Revoke the refresh token family and clear the cookie",
    response_model=SuccessResponse,
)
async def logout(request: Request, response: Response, auth: AuthService = Depends(get_auth_service)):
    await auth.logout(read_refresh_cookie(request))
    clear_refresh_cookie(response)
    return success_response("Logged out successfully", None)


# ─── POST /auth/forgot-password ───────────────────────────────────────────────
@router.post(
    "/forgot-password",
    status_code=status.HTTP_200_OK,
    summary="Request OTP for password reset",
    response_model=SuccessResponse,
)
async def forgot_password(data: ForgotPasswordRequest, auth: AuthService = Depends(get_auth_service)):
    """
    Sends OTP to the registered email address.
    Always returns 200 with the same message, even if the email does not exist (prevents enumeration).
    """
    await auth.forgot_password(data.email)
    return success_response(GENERIC_RESET_ACK, None)


# ─── POST /auth/verify-reset-otp ──────────────────────────────────────────────
@router.post(
    "/verify-reset-otp",
    status_code=status.HTTP_200_OK,
    summary="Verify the password reset OTP",
    response_model=SuccessResponse,
)
async def verify_forget_password_otp(data: VerifyOTPRequest, auth: AuthService = Depends(get_auth_service)):
    await auth.verify_reset_otp(data.email, data.otp)
    return success_response("OTP verified. You can now reset your password.", None)


# ─── POST /auth/resend-reset-otp ──────────────────────────────────────────────
@router.post(
    "/resend-reset-otp",
    status_code=status.HTTP_200_OK,
    summary="Resend the password reset OTP",
    response_model=SuccessResponse,
)
async def resend_password_reset_otp(data: ResendOTPRequest, auth: AuthService = Depends(get_auth_service)):
    await auth.resend_reset_otp(data.email)
    return success_response(GENERIC_RESET_ACK, None)


# ─── GET /auth/reset-verification ─────────────────────────────────────────────
@router.get(
    "/reset-verification",
    status_code=status.HTTP_200_OK,
    summary="Whether the password reset OTP has been verified",
    response_model=SuccessResponse[ResetVerificationStatus],
)
async def check_password_reset_verification(
    email: EmailStr = Query(...),
    auth: AuthService = Depends(get_auth_service),
):
    verified = await auth.is_reset_verified(normalize_email(email))
    return success_response("Reset verification status retrieved", {"isVerified": verified})


# ─── POST /auth/reset-password ────────────────────────────────────────────────
@router.post(
    "/reset-password",
    status_code=status.HTTP_200_OK,
    summary="Set a new password after OTP verification",
    response_model=SuccessResponse,
)
async def reset_password(data: ResetPasswordRequest, auth: AuthService = Depends(get_auth_service)):
    await auth.reset_password(data.email, data.newPassword)
    return success_response("Password reset successfully. Please login with your new password.", None)


# ─── GET /auth/me ─────────────────────────────────────────────────────────────
@router.get(
    "/me",
    status_code=status.HTTP_200_OK,
    summary="Get current authenticated user profile",
    response_model=SuccessResponse[UserOut],
)
async def get_me(current_user: User = Depends(get_current_user)):
    return success_response("User profile retrieved", serialize_user(current_user))
