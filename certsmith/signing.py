import dataclasses
import datetime
import enum
import logging

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from certsmith.errors import InputValidationError, SigningError
from certsmith.keys import generate_private_key, signature_hash_for
from certsmith.san import SubjectAlternativeNames, classify_san
from certsmith.settings import CertConfig
from certsmith.subject import build_subject
from certsmith.template import build_template

log = logging.getLogger(__name__)


class HierarchyKind(str, enum.Enum):
    SELF_SIGNED = "self-signed"
    AUTHORITY_SIGNED = "authority-signed"
    CSR_DERIVED = "csr-derived"


@dataclasses.dataclass
class Authority:
    """The parent certificate and its private key"""

    certificate: x509.Certificate
    private_key: object

    def subject_name(self) -> str:
        return self.certificate.subject.rfc4514_string()


@dataclasses.dataclass
class IssuedCertificate:
    certificate: x509.Certificate
    # None when the certificate was built from a signing request
    private_key: object | None
    kind: HierarchyKind
    authority: Authority | None = None


def _public_key_bytes(public_key) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def resolve_authority(certificate: x509.Certificate | None, private_key) -> Authority | None:
    """
    Both or neither, and the key has to belong to the certificate
    """
    if certificate is None and private_key is None:
        return None
    if certificate is None or private_key is None:
        raise InputValidationError(
            "An authority certificate and its private key must be supplied together"
        )
    if _public_key_bytes(certificate.public_key()) != _public_key_bytes(private_key.public_key()):
        raise SigningError(
            f"Authority private key does not match the authority certificate: "
            f"{certificate.subject.rfc4514_string()}"
        )
    return Authority(certificate=certificate, private_key=private_key)


def _request_extensions(request: x509.CertificateSigningRequest):
    sans = SubjectAlternativeNames()
    others = []
    for extension in request.extensions:
        if isinstance(extension.value, x509.SubjectAlternativeName):
            sans = SubjectAlternativeNames.from_extension(extension.value)
        else:
            others.append(extension)
    return sans, others


class SigningHierarchyResolver:
    """
    Pick the signer and sign: a certificate signing request is signed by the authority,
    with an authority a new key pair is certified by it, otherwise the certificate signs itself
    """

    def __init__(self, config: CertConfig, now: datetime.datetime | None = None):
        self.config = config
        self.now = now

    def issue(
        self,
        is_ca: bool,
        authority_certificate: x509.Certificate | None = None,
        authority_key=None,
        request: x509.CertificateSigningRequest | None = None,
    ) -> IssuedCertificate:
        authority = resolve_authority(authority_certificate, authority_key)

        if request is not None:
            return self._issue_from_request(request, authority, is_ca)

        if authority is None and is_ca is False and self.config.build.allow_self_signed is False:
            raise InputValidationError(
                "A leaf certificate needs an authority certificate and key, "
                "or self signing has to be allowed explicitly"
            )

        subject_options = self.config.subject.with_default_common_name()
        subject = build_subject(subject_options)
        sans = classify_san(subject_options.hosts())
        private_key = generate_private_key(self.config.key)
        template = build_template(subject, sans, self.config.build, is_ca, now=self.now)

        if authority is None:
            log.info(f"Self signing certificate: {subject.rfc4514_string()}")
            certificate = self._sign(template, template.subject, private_key.public_key(), private_key, None)
            return IssuedCertificate(certificate, private_key, HierarchyKind.SELF_SIGNED)

        log.info(f"{authority.subject_name()} is signing the certificate for {subject.rfc4514_string()}")
        certificate = self._sign(
            template, authority.certificate.subject, private_key.public_key(), authority.private_key, authority.certificate
        )
        return IssuedCertificate(certificate, private_key, HierarchyKind.AUTHORITY_SIGNED, authority)

    def _issue_from_request(
        self, request: x509.CertificateSigningRequest, authority: Authority | None, is_ca: bool
    ) -> IssuedCertificate:
        if authority is None:
            raise InputValidationError(
                "Signing a certificate request needs an authority certificate and key"
            )
        if request.is_signature_valid is False:
            raise SigningError(f"Certificate signing request signature is invalid: {request.subject.rfc4514_string()}")

        sans, others = _request_extensions(request)
        template = build_template(
            request.subject, sans, self.config.build, is_ca, now=self.now, extra_extensions=others
        )
        log.info(f"{authority.subject_name()} is signing the certificate for {request.subject.rfc4514_string()} csr")
        certificate = self._sign(
            template, authority.certificate.subject, request.public_key(), authority.private_key, authority.certificate
        )
        return IssuedCertificate(certificate, None, HierarchyKind.CSR_DERIVED, authority)

    @staticmethod
    def _sign(template, issuer_name, public_key, signer_key, issuer) -> x509.Certificate:
        builder = template.to_builder(issuer_name, public_key, issuer)
        try:
            certificate = builder.sign(signer_key, signature_hash_for(signer_key))
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise SigningError(f"Error occurred while generating certificate: {e}") from e
        log.info(f"Certificate created with serial: {certificate.serial_number}")
        return certificate
