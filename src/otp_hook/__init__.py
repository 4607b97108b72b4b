"""
OTP delivery inline hook.

Delivers identity-provider one-time passcodes by SMS or voice call.
"""

__version__ = "0.1.0"
