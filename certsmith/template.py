import dataclasses
import datetime
import functools
import logging
from typing import List

from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID, ExtensionOID

from certsmith.errors import SigningError
from certsmith.san import SubjectAlternativeNames
from certsmith.serial import generate_serial_number
from certsmith.settings import BuildOptions

log = logging.getLogger(__name__)

# iOS and macOS reject tls server certificates valid for longer, see https://support.apple.com/en-us/HT210176
MAX_APPLE_VALIDITY_DAYS = 825

# RFC 5280 4.1.2.5, a certificate with no well-defined expiration date
NO_WELL_DEFINED_EXPIRATION = datetime.datetime(9999, 12, 31, 23, 59, 59, tzinfo=datetime.timezone.utc)

CA_KEY_USAGE = frozenset({"key_cert_sign", "crl_sign"})
LEAF_KEY_USAGE = frozenset({"key_encipherment", "digital_signature"})

# set from the template itself, never copied over from a certificate signing request
TEMPLATE_EXTENSIONS = frozenset(
    {
        ExtensionOID.BASIC_CONSTRAINTS,
        ExtensionOID.KEY_USAGE,
        ExtensionOID.EXTENDED_KEY_USAGE,
        ExtensionOID.SUBJECT_ALTERNATIVE_NAME,
        ExtensionOID.SUBJECT_KEY_IDENTIFIER,
        ExtensionOID.AUTHORITY_KEY_IDENTIFIER,
    }
)


@functools.lru_cache(maxsize=None)
def process_start_time() -> datetime.datetime:
    """
    Captured on first use and then shared, so that every certificate built in one run
    has the same not valid before time
    """
    return datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)


def _key_usage(names: frozenset[str]) -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature="digital_signature" in names,
        content_commitment="content_commitment" in names,
        key_encipherment="key_encipherment" in names,
        data_encipherment="data_encipherment" in names,
        key_agreement="key_agreement" in names,
        key_cert_sign="key_cert_sign" in names,
        crl_sign="crl_sign" in names,
        encipher_only=False,
        decipher_only=False,
    )


def _authority_key_identifier(issuer: x509.Certificate) -> x509.AuthorityKeyIdentifier:
    try:
        ski = issuer.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
        return x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ski.value)
    except x509.ExtensionNotFound:
        return x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer.public_key())


@dataclasses.dataclass
class CertificateTemplate:
    """The unsigned certificate, rendered into a cryptography builder when it is signed"""

    serial_number: int
    subject: x509.Name
    sans: SubjectAlternativeNames
    not_before: datetime.datetime
    not_after: datetime.datetime | None
    is_ca: bool = False
    basic_constraints_valid: bool = False
    key_usage: frozenset[str] = frozenset()
    ext_key_usage: List[x509.ObjectIdentifier] = dataclasses.field(default_factory=list)
    max_path_len: int | None = None
    max_path_len_zero: bool = False
    extra_extensions: List[x509.Extension] = dataclasses.field(default_factory=list)

    def path_length(self) -> int | None:
        if self.is_ca is False:
            return None
        if self.max_path_len is not None:
            return self.max_path_len
        if self.max_path_len_zero:
            return 0
        return None

    def to_builder(
        self,
        issuer_name: x509.Name,
        public_key,
        issuer: x509.Certificate | None = None,
    ) -> x509.CertificateBuilder:
        """
        issuer is the authority certificate, None when the template signs itself
        """
        try:
            b = (
                x509.CertificateBuilder()
                .serial_number(self.serial_number)
                .subject_name(self.subject)
                .issuer_name(issuer_name)
                .public_key(public_key)
                .not_valid_before(self.not_before)
                .not_valid_after(self.not_after or NO_WELL_DEFINED_EXPIRATION)
            )
            if self.basic_constraints_valid:
                b = b.add_extension(
                    x509.BasicConstraints(ca=self.is_ca, path_length=self.path_length()),
                    critical=True,
                )
            if self.key_usage:
                b = b.add_extension(_key_usage(self.key_usage), critical=True)
            if self.ext_key_usage:
                b = b.add_extension(x509.ExtendedKeyUsage(self.ext_key_usage), critical=False)
            san = self.sans.extension()
            if san is not None:
                # RFC 5280 4.2.1.6, critical when the subject is empty
                b = b.add_extension(san, critical=len(self.subject) == 0)
            b = b.add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
            if issuer is not None:
                b = b.add_extension(_authority_key_identifier(issuer), critical=False)
            for extension in self.extra_extensions:
                if extension.oid in TEMPLATE_EXTENSIONS:
                    continue
                b = b.add_extension(extension.value, critical=extension.critical)
        except (ValueError, TypeError) as e:
            raise SigningError(f"Invalid certificate template: {e}") from e
        return b


def build_template(
    subject: x509.Name,
    sans: SubjectAlternativeNames,
    build: BuildOptions,
    is_ca: bool,
    now: datetime.datetime | None = None,
    extra_extensions: List[x509.Extension] | None = None,
) -> CertificateTemplate:
    """
    Populate serial, validity, key usage and path length for a CA or a leaf certificate
    """
    not_before = now or process_start_time()
    not_after = None
    if build.days > 0:
        if build.days > MAX_APPLE_VALIDITY_DAYS:
            log.warning(
                f"iOS and macOS certificates must have a validity period of {MAX_APPLE_VALIDITY_DAYS} days "
                f"or fewer, requested: {build.days}, see: https://support.apple.com/en-us/HT210176"
            )
        not_after = not_before + datetime.timedelta(hours=24 * build.days)

    template = CertificateTemplate(
        serial_number=generate_serial_number(),
        subject=subject,
        sans=sans,
        not_before=not_before,
        not_after=not_after,
        is_ca=is_ca,
        extra_extensions=list(extra_extensions or []),
    )

    if is_ca:
        template.basic_constraints_valid = True
        template.key_usage = CA_KEY_USAGE
    else:
        template.key_usage = LEAF_KEY_USAGE
        if sans.has_network_names():
            template.ext_key_usage += [ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]
        if sans.has_email_addresses():
            template.ext_key_usage.append(ExtendedKeyUsageOID.EMAIL_PROTECTION)

    # path length zero means no intermediate may follow, not "unconstrained"
    if is_ca and build.path_len_constraint > 0:
        template.max_path_len = build.path_len_constraint
        template.max_path_len_zero = False
    else:
        template.max_path_len_zero = True

    log.debug(
        f"template serial: {template.serial_number} - ca: {is_ca} - not after: {template.not_after} - "
        f"path length: {template.path_length()}"
    )
    return template
