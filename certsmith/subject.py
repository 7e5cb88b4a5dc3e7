import logging

from cryptography import x509
from cryptography.x509.oid import NameOID

from certsmith.errors import InputValidationError
from certsmith.settings import SubjectOptions

log = logging.getLogger(__name__)


def build_subject(subject: SubjectOptions) -> x509.Name:
    """
    Build the distinguished name, one single valued attribute per non empty field
    the email goes last as the PKCS#9 emailAddress attribute (1.2.840.113549.1.9.1)
    """
    fields = [
        (NameOID.COUNTRY_NAME, subject.country),
        (NameOID.STATE_OR_PROVINCE_NAME, subject.province),
        (NameOID.LOCALITY_NAME, subject.locality),
        (NameOID.STREET_ADDRESS, subject.street_address),
        (NameOID.POSTAL_CODE, subject.postal_code),
        (NameOID.ORGANIZATION_NAME, subject.organization),
        (NameOID.ORGANIZATIONAL_UNIT_NAME, subject.organizational_unit),
        (NameOID.COMMON_NAME, subject.common_name),
        # encoded as an IA5String, the default string type for this oid
        (NameOID.EMAIL_ADDRESS, subject.email),
    ]
    try:
        name = x509.Name(
            [x509.NameAttribute(oid, value.strip()) for oid, value in fields if value.strip() != ""]
        )
    except ValueError as e:
        raise InputValidationError(f"Invalid subject name attribute: {e}") from e
    log.debug(f"subject: {name.rfc4514_string()}")
    return name
