"""
Digital Signature Service for Custody Log Authentication.

ECDSA P-256 / SHA-256 detached signatures. Signatures travel as base64 of the
raw 64-byte ``r || s`` form rather than DER, so they can be checked by any
platform crypto library that uses the fixed-width representation.
"""

import base64
from typing import Tuple, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)

PrivateKeyLike = Union[ec.EllipticCurvePrivateKey, str, bytes]
PublicKeyLike = Union[ec.EllipticCurvePublicKey, str, bytes]

# P-256 coordinate size in bytes
_COORDINATE_SIZE = 32


class DigitalSignatureService:
    """
    Digital signature service for custody log authentication.

    Provides P-256 key generation, signing and verification. Keys may be
    passed as key objects or PEM text.
    """

    def __init__(self):
        """Initialize the digital signature service."""
        self.curve = ec.SECP256R1()
        self.algorithm = "ECDSA-P256-SHA256"

    def generate_key_pair(self) -> Tuple[str, str]:
        """
        Generate a P-256 key pair.

        Returns:
            Tuple[str, str]: (private_key_pem, public_key_pem)
        """
        private_key = ec.generate_private_key(self.curve)

        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("utf-8")

        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("utf-8")

        return private_pem, public_pem

    def load_private_key(self, key: PrivateKeyLike) -> ec.EllipticCurvePrivateKey:
        """
        Load a private key from an object or PEM.

        Raises:
            ValueError: If the key is not a P-256 private key
        """
        if isinstance(key, str):
            key = key.encode("utf-8")
        if isinstance(key, bytes):
            key = serialization.load_pem_private_key(key, password=None)
        if not isinstance(key, ec.EllipticCurvePrivateKey) or key.curve.name != self.curve.name:
            raise ValueError("Signing key must be an EC P-256 private key")
        return key

    def load_public_key(self, key: PublicKeyLike) -> ec.EllipticCurvePublicKey:
        """
        Load a public key from an object or PEM.

        Raises:
            ValueError: If the key is not a P-256 public key
        """
        if isinstance(key, str):
            key = key.encode("utf-8")
        if isinstance(key, bytes):
            key = serialization.load_pem_public_key(key)
        if not isinstance(key, ec.EllipticCurvePublicKey) or key.curve.name != self.curve.name:
            raise ValueError("Verification key must be an EC P-256 public key")
        return key

    def sign_bytes(self, data: bytes, private_key: PrivateKeyLike) -> str:
        """
        Sign data with a private key.

        Args:
            data: Message bytes
            private_key: P-256 private key (object or PEM)

        Returns:
            str: Base64-encoded raw ``r || s`` signature
        """
        key = self.load_private_key(private_key)
        der_signature = key.sign(data, ec.ECDSA(hashes.SHA256()))

        r, s = decode_dss_signature(der_signature)
        raw = r.to_bytes(_COORDINATE_SIZE, "big") + s.to_bytes(_COORDINATE_SIZE, "big")

        return base64.b64encode(raw).decode("ascii")

    def verify_bytes(self, data: bytes, signature_b64: str, public_key: PublicKeyLike) -> bool:
        """
        Verify a raw ``r || s`` signature.

        Args:
            data: Message bytes
            signature_b64: Base64-encoded signature
            public_key: P-256 public key (object or PEM)

        Returns:
            bool: True if signature is valid, False otherwise
        """
        key = self.load_public_key(public_key)

        try:
            raw = base64.b64decode(signature_b64, validate=True)
        except ValueError:
            return False
        if len(raw) != 2 * _COORDINATE_SIZE:
            return False

        r = int.from_bytes(raw[:_COORDINATE_SIZE], "big")
        s = int.from_bytes(raw[_COORDINATE_SIZE:], "big")

        try:
            key.verify(encode_dss_signature(r, s), data, ec.ECDSA(hashes.SHA256()))
        except InvalidSignature:
            return False

        return True
