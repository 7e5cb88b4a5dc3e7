import logging

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm

from certsmith.errors import SigningError
from certsmith.keys import generate_private_key, signature_hash_for
from certsmith.san import classify_san
from certsmith.settings import CertConfig
from certsmith.subject import build_subject

log = logging.getLogger(__name__)


def build_certificate_request(config: CertConfig):
    """
    Create a certificate signing request that will need to be sent to a CA to be signed,
    signed with a freshly generated private key which is returned with the request
    :return: (private key, certificate signing request)
    """
    subject_options = config.subject.with_default_common_name()
    private_key = generate_private_key(config.key)
    subject = build_subject(subject_options)
    sans = classify_san(subject_options.hosts())

    b = x509.CertificateSigningRequestBuilder().subject_name(subject)
    san = sans.extension()
    try:
        if san is not None:
            b = b.add_extension(san, critical=len(subject) == 0)
        csr = b.sign(private_key, signature_hash_for(private_key))
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise SigningError(f"Error occurred while generating certificate signing request: {e}") from e
    log.info(f"CSR for: {subject.rfc4514_string()}")
    return private_key, csr
