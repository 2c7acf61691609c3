"""
Pickup verification service.

This module handles:
    - Issuing one-time pickup codes
    - Verifying codes with expiry and attempt limits
    - Reaping expired codes
"""

from .otp_challenge import OtpChallenge, IssuedOtp, OtpVerification, generate_code

__all__ = [
    "OtpChallenge",
    "IssuedOtp",
    "OtpVerification",
    "generate_code",
]
