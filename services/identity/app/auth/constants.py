import enum

# ── Token lifetimes ───────────────────────────────────────────────────────────
ACCESS_TOKEN_EXPIRE_SECONDS: int = 3_600          # 1 hour
REFRESH_TOKEN_EXPIRE_SECONDS: int = 86_400 * 7    # 7 days
EMAIL_VERIFY_EXPIRE_SECONDS: int = 86_400         # 24 hours
PASSWORD_RESET_EXPIRE_SECONDS: int = 3_600        # 1 hour

# 32 random bytes → 64 hex chars (256 bits of entropy)
SINGLE_USE_TOKEN_BYTES: int = 32

# ── Password policy ───────────────────────────────────────────────────────────
PASSWORD_MIN_LENGTH: int = 8
PASSWORD_MAX_LENGTH: int = 128


# ── JWT token type claim ──────────────────────────────────────────────────────
class TokenType(str, enum.Enum):
    ACCESS = "access"
    REFRESH = "refresh"


# ── Single-use token purpose ──────────────────────────────────────────────────
class SingleUseTokenKind(str, enum.Enum):
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"

    @property
    def lifetime_seconds(self) -> int:
        if self is SingleUseTokenKind.EMAIL_VERIFICATION:
            return EMAIL_VERIFY_EXPIRE_SECONDS
        return PASSWORD_RESET_EXPIRE_SECONDS


# ── External identity providers ───────────────────────────────────────────────
class SocialProvider(str, enum.Enum):
    GOOGLE = "google"
    FACEBOOK = "facebook"
    GITHUB = "github"


# ── Uniform replies (anti-enumeration) ────────────────────────────────────────
FORGOT_PASSWORD_MESSAGE = "If your email exists, you will receive a password reset link."
RESEND_VERIFICATION_MESSAGE = (
    "If your account exists and is not yet verified, a new verification email has been sent."
)
