"""Signed, time-limited credentials issued by a journal instance."""

from .codec import Purpose, SignedTokenCodec, DecodedToken
from .service import TokenService, EmailVerificationClaims, \
    PasswordResetClaims, SsoHandoffClaims, ExportClaims, LIFETIMES
