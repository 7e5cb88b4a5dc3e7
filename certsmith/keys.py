import enum
import logging

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from cryptography.hazmat.primitives.asymmetric.types import CertificateIssuerPrivateKeyTypes
from pydantic import BaseModel, ConfigDict, field_validator

from certsmith.errors import KeyGenerationError

log = logging.getLogger(__name__)

RSA_PUBLIC_EXPONENT = 65537


class KeyAlgorithm(str, enum.Enum):
    RSA = "rsa"
    ECDSA = "ecdsa"
    ED25519 = "ed25519"

    @classmethod
    def parse(cls, value: "str | KeyAlgorithm | None") -> "KeyAlgorithm":
        """Case insensitive, anything unknown is RSA"""
        if isinstance(value, KeyAlgorithm):
            return value
        name = (value or "").strip().lower()
        for algorithm in cls:
            if algorithm.value == name:
                return algorithm
        return cls.RSA


class EllipticCurveName(str, enum.Enum):
    P224 = "P224"
    P256 = "P256"
    P384 = "P384"
    P521 = "P521"

    @classmethod
    def parse(cls, value: "str | EllipticCurveName | None") -> "EllipticCurveName":
        """Case insensitive, unrecognised curve names fall back to P256"""
        if isinstance(value, EllipticCurveName):
            return value
        name = (value or "").strip().upper()
        for curve in cls:
            if curve.value == name:
                return curve
        log.debug(f"unrecognised curve: {value}, using {cls.P256.value}")
        return cls.P256

    def curve(self) -> ec.EllipticCurve:
        return {
            EllipticCurveName.P224: ec.SECP224R1,
            EllipticCurveName.P256: ec.SECP256R1,
            EllipticCurveName.P384: ec.SECP384R1,
            EllipticCurveName.P521: ec.SECP521R1,
        }[self]()


class KeySpec(BaseModel):
    """Which key pair to generate, RSA 2048 unless told otherwise"""

    model_config = ConfigDict(frozen=True)

    algorithm: KeyAlgorithm = KeyAlgorithm.RSA
    bits: int = 2048
    curve: EllipticCurveName = EllipticCurveName.P256

    @field_validator("algorithm", mode="before")
    @classmethod
    def parse_algorithm(cls, value):
        return KeyAlgorithm.parse(value)

    @field_validator("curve", mode="before")
    @classmethod
    def parse_curve(cls, value):
        return EllipticCurveName.parse(value)

    def describe(self) -> str:
        if self.algorithm is KeyAlgorithm.RSA:
            return f"rsa {self.bits} bits"
        if self.algorithm is KeyAlgorithm.ECDSA:
            return f"ecdsa {self.curve.value}"
        return self.algorithm.value


def generate_private_key(spec: KeySpec) -> CertificateIssuerPrivateKeyTypes:
    """
    Generate a key pair from the operating system random source, failures are not retried
    """
    try:
        if spec.algorithm is KeyAlgorithm.ED25519:
            private_key = ed25519.Ed25519PrivateKey.generate()
        elif spec.algorithm is KeyAlgorithm.ECDSA:
            private_key = ec.generate_private_key(spec.curve.curve())
        elif spec.algorithm is KeyAlgorithm.RSA:
            private_key = rsa.generate_private_key(
                public_exponent=RSA_PUBLIC_EXPONENT, key_size=spec.bits
            )
        else:
            raise KeyGenerationError(f"Unsupported key algorithm: {spec.algorithm}")
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyGenerationError(
            f"Error occurred while generating private key ({spec.describe()}): {e}"
        ) from e
    log.info(f"Private key created: {spec.describe()}")
    return private_key


def signature_hash_for(private_key) -> hashes.HashAlgorithm | None:
    """The digest used when this key signs, None for ed25519 which hashes internally"""
    if isinstance(private_key, ed25519.Ed25519PrivateKey):
        return None
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        if isinstance(private_key.curve, ec.SECP384R1):
            return hashes.SHA384()
        if isinstance(private_key.curve, ec.SECP521R1):
            return hashes.SHA512()
        return hashes.SHA256()
    return hashes.SHA256()
