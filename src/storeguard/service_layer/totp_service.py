"""ABOUTME: TOTP service for two-factor authentication core functions
ABOUTME: Handles TOTP secret generation, encryption, QR codes, code verification and recovery code hashing"""

import base64
import hashlib
import io
import secrets
import uuid

import pyotp
import qrcode
from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from storeguard.config import get_totp_encryption_key

TOTP_DIGITS = 6


def derive_user_encryption_key(master_key: bytes, user_id: uuid.UUID) -> bytes:
    """Derive a user-specific encryption key from the master key using HKDF.

    This ensures each user has a different encryption key even with the same master key.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=b"storeguard-totp-encryption",
        info=user_id.bytes,
    )
    return hkdf.derive(master_key)


def _user_fernet(user_id: uuid.UUID) -> Fernet:
    user_key = derive_user_encryption_key(get_totp_encryption_key(), user_id)
    # Fernet requires a base64-encoded 32-byte key
    return Fernet(base64.urlsafe_b64encode(user_key))


def generate_totp_secret() -> str:
    """Generate a new random TOTP secret (base32 encoded)."""
    return pyotp.random_base32()


def encrypt_totp_secret(secret: str, user_id: uuid.UUID) -> str:
    """Encrypt TOTP secret for storage using Fernet symmetric encryption.

    Args:
        secret: The plaintext TOTP secret
        user_id: The user's UUID for key derivation

    Returns:
        Base64-encoded encrypted secret
    """
    return _user_fernet(user_id).encrypt(secret.encode("utf-8")).decode("ascii")


def decrypt_totp_secret(encrypted_secret: str, user_id: uuid.UUID) -> str:
    """Decrypt TOTP secret from storage.

    Raises cryptography.fernet.InvalidToken if the secret was encrypted for
    another user or with another master key.
    """
    return _user_fernet(user_id).decrypt(encrypted_secret.encode("ascii")).decode("utf-8")


def provisioning_uri(secret: str, account_name: str, issuer: str) -> str:
    """The otpauth:// URI that authenticator apps import."""
    return pyotp.TOTP(secret).provisioning_uri(name=account_name, issuer_name=issuer)


def generate_qr_code_data_url(secret: str, account_name: str, issuer: str) -> str:
    """Render the provisioning URI as a PNG QR code data URL (data:image/png;base64,...)."""
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(provisioning_uri(secret, account_name, issuer))
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer)
    img_base64 = base64.b64encode(buffer.getvalue()).decode("ascii")

    return f"data:image/png;base64,{img_base64}"


def looks_like_totp_code(code: str) -> bool:
    code = code.strip().replace(" ", "")
    return len(code) == TOTP_DIGITS and code.isdigit()


def verify_totp_code(secret: str, code: str, valid_window: int = 1) -> bool:
    """Verify a TOTP code against a secret.

    valid_window=1 accepts codes from the previous and next 30 second step,
    which absorbs clock drift between server and phone.
    """
    if not looks_like_totp_code(code):
        return False
    return pyotp.TOTP(secret).verify(code.strip().replace(" ", ""), valid_window=valid_window)


def generate_recovery_codes(count: int = 10) -> list[str]:
    """Generate random recovery codes formatted as XXXXX-XXXXX (10 hex characters)."""
    codes = []
    for _ in range(count):
        code_hex = secrets.token_bytes(5).hex().upper()
        codes.append(f"{code_hex[:5]}-{code_hex[5:]}")
    return codes


def normalise_recovery_code(code: str) -> str:
    return code.strip().replace("-", "").replace(" ", "").upper()


def hash_recovery_code(code: str) -> str:
    """One-way hash of a recovery code.

    Unsalted SHA-256 of the normalised code so a submitted code can be matched
    against the stored set directly.
    """
    return hashlib.sha256(normalise_recovery_code(code).encode("utf-8")).hexdigest()
