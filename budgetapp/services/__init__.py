# Services layer for business logic
from budgetapp.services.auth_email_service import AuthEmailService, EmailKind, EmailSender
from budgetapp.services.otp_service import OtpService, OtpIssue
from budgetapp.services.auth_service import AuthService, AuthResult
