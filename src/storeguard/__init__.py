"""ABOUTME: StoreGuard access control and abuse prevention core
ABOUTME: IP reputation, sliding window rate limiting, audit trail and TOTP two-factor authentication"""

__version__ = "0.1.0"
