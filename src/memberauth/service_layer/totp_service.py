"""ABOUTME: TOTP service for two-factor authentication core functions
ABOUTME: Handles TOTP secret generation, encryption at rest, QR codes, and drift-tolerant code verification"""

import base64
import io
import uuid

import pyotp
import qrcode
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from memberauth.config import get_totp_encryption_key


def derive_member_encryption_key(master_key: bytes, member_id: uuid.UUID) -> bytes:
    """Derive a member-specific encryption key from the master key using HKDF.

    This ensures each member has a different encryption key even with the same master key.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=b"memberauth-totp-encryption",
        info=member_id.bytes,
    )
    return hkdf.derive(master_key)


def _fernet_for(member_id: uuid.UUID) -> Fernet:
    member_key = derive_member_encryption_key(get_totp_encryption_key(), member_id)
    # Fernet requires a base64-encoded 32-byte key
    return Fernet(base64.urlsafe_b64encode(member_key))


def generate_totp_secret() -> str:
    """Generate a new random 160-bit TOTP secret (base32 encoded)."""
    return pyotp.random_base32()


def encrypt_totp_secret(secret: str, member_id: uuid.UUID) -> str:
    """Encrypt TOTP secret for storage using Fernet symmetric encryption.

    Args:
        secret: The plaintext TOTP secret
        member_id: The member's UUID for key derivation

    Returns:
        Base64-encoded encrypted secret
    """
    return _fernet_for(member_id).encrypt(secret.encode("utf-8")).decode("ascii")


def decrypt_totp_secret(encrypted_secret: str, member_id: uuid.UUID) -> str:
    """Decrypt TOTP secret from storage.

    Args:
        encrypted_secret: The base64-encoded encrypted secret
        member_id: The member's UUID for key derivation

    Returns:
        The plaintext TOTP secret

    Raises:
        ValueError: If the secret was encrypted under a different key or member
    """
    try:
        decrypted_bytes = _fernet_for(member_id).decrypt(encrypted_secret.encode("ascii"))
    except InvalidToken as e:
        raise ValueError("Stored TOTP secret could not be decrypted") from e
    return decrypted_bytes.decode("utf-8")


def get_provisioning_uri(secret: str, email: str, issuer: str) -> str:
    return pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=issuer)


def generate_qr_code_data_url(secret: str, email: str, issuer: str) -> str:
    """Generate a QR code as a data URL for the authenticator app.

    Returns:
        Data URL string (data:image/png;base64,...)
    """
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(get_provisioning_uri(secret, email, issuer))
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer)
    img_base64 = base64.b64encode(buffer.getvalue()).decode("ascii")

    return f"data:image/png;base64,{img_base64}"


def verify_totp_code(secret: str, code: str) -> bool:
    """Verify a TOTP code against a secret.

    Args:
        secret: The TOTP secret
        code: The 6-digit code from the authenticator app

    Returns:
        True if the code is valid, False otherwise
    """
    code = code.strip()
    if not code.isdigit():
        return False
    # valid_window=1 accepts the previous and next 30-second step as well as the current one
    return pyotp.TOTP(secret).verify(code, valid_window=1)
