"""
RSA framing for Nagad: SHA256withRSA signatures and PKCS#1 v1.5 encryption.

Pure functions, no state and no I/O. Keys are accepted as PEM text, as the
bare base64 DER blobs Nagad issues to merchants, or as loaded key objects.
"""
from __future__ import annotations

import base64
import binascii
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa


DHAKA_TZ = timezone(timedelta(hours=6), name="Asia/Dhaka")

PrivateKeyInput = Union[str, bytes, rsa.RSAPrivateKey]
PublicKeyInput = Union[str, bytes, rsa.RSAPublicKey]


class CryptoError(Exception):
    """Key loading, encryption or decryption failed."""


def _as_bytes(material: Union[str, bytes]) -> bytes:
    return material.encode("utf-8") if isinstance(material, str) else material


def _b64decode(data: Union[str, bytes]) -> bytes:
    cleaned = b"".join(_as_bytes(data).split())
    return base64.b64decode(cleaned, validate=True)


def load_private_key(material: PrivateKeyInput) -> rsa.RSAPrivateKey:
    if isinstance(material, rsa.RSAPrivateKey):
        return material
    raw = _as_bytes(material).strip()
    try:
        if b"-----BEGIN" in raw:
            key = serialization.load_pem_private_key(raw, password=None)
        else:
            key = serialization.load_der_private_key(_b64decode(raw), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm, binascii.Error) as exc:
        raise CryptoError(f"invalid private key: {exc}") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise CryptoError("private key is not an RSA key")
    return key


def load_public_key(material: PublicKeyInput) -> rsa.RSAPublicKey:
    if isinstance(material, rsa.RSAPublicKey):
        return material
    raw = _as_bytes(material).strip()
    try:
        if b"-----BEGIN" in raw:
            key = serialization.load_pem_public_key(raw)
        else:
            key = serialization.load_der_public_key(_b64decode(raw))
    except (ValueError, TypeError, UnsupportedAlgorithm, binascii.Error) as exc:
        raise CryptoError(f"invalid public key: {exc}") from exc
    if not isinstance(key, rsa.RSAPublicKey):
        raise CryptoError("public key is not an RSA key")
    return key


def sign(data: str, private_key: PrivateKeyInput) -> str:
    key = load_private_key(private_key)
    signature = key.sign(data.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(signature).decode("ascii")


def verify(data: str, signature_b64: Optional[str], public_key: PublicKeyInput) -> bool:
    """True only for a valid SHA256withRSA signature; bad input yields False."""
    if not signature_b64:
        return False
    key = load_public_key(public_key)
    try:
        signature = _b64decode(signature_b64)
        key.verify(signature, data.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    except (InvalidSignature, binascii.Error, ValueError):
        return False
    return True


def encrypt(data: str, public_key: PublicKeyInput) -> str:
    key = load_public_key(public_key)
    try:
        ciphertext = key.encrypt(data.encode("utf-8"), padding.PKCS1v15())
    except ValueError as exc:  # payload larger than the modulus allows
        raise CryptoError(f"encryption failed: {exc}") from exc
    return base64.b64encode(ciphertext).decode("ascii")


def decrypt(data_b64: Optional[str], private_key: PrivateKeyInput) -> str:
    if not data_b64:
        raise CryptoError("nothing to decrypt")
    key = load_private_key(private_key)
    try:
        plaintext = key.decrypt(_b64decode(data_b64), padding.PKCS1v15())
        return plaintext.decode("utf-8")
    except (ValueError, binascii.Error, UnicodeDecodeError) as exc:
        raise CryptoError(f"decryption failed: {exc}") from exc


def random_challenge(nbytes: int = 20) -> str:
    return secrets.token_hex(nbytes)


def nagad_timestamp(now: Optional[datetime] = None) -> str:
    """YYYYMMDDHHMMSS in Bangladesh time, the format Nagad signs over."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(DHAKA_TZ).strftime("%Y%m%d%H%M%S")
