from budgetapp.schemas.auth import (
    SendOtpRequest,
    ForgotPasswordRequest,
    VerifyOtpRequest,
    RegisterRequest,
    LoginRequest,
    ResetPasswordRequest,
    ChangePasswordRequest,
    ProfileUpdate,
    UserResponse,
    AuthResponse,
    MessageResponse,
    VerifyOtpResponse,
    ProfileResponse,
    PasswordChangedResponse,
)
