import logging
import pathlib
import shutil

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import load_pem_private_key
from cryptography.x509.oid import ExtensionOID, NameOID

from certsmith.errors import InputValidationError, ParseError
from certsmith.san import SubjectAlternativeNames
from certsmith.utils import require_file_value

log = logging.getLogger(__name__)


def parse_certificate(data: bytes, source: str = "data") -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError as e:
        raise ParseError(f"Invalid certificate: {source} - {e}") from e


def parse_certificate_request(data: bytes, source: str = "data") -> x509.CertificateSigningRequest:
    """Accepts both the CERTIFICATE REQUEST and the legacy NEW CERTIFICATE REQUEST labels"""
    try:
        return x509.load_pem_x509_csr(data)
    except ValueError as e:
        raise ParseError(f"Invalid certificate request: {source} - {e}") from e


def parse_private_key(data: bytes, password: str | bytes | None = None, source: str = "data"):
    """PKCS#8 PRIVATE KEY, or the legacy RSA PRIVATE KEY / EC PRIVATE KEY formats"""
    if isinstance(password, str):
        password = bytes(password, encoding="utf-8")
    try:
        return load_pem_private_key(data, password=password)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ParseError(f"Invalid private key: {source} - {e}") from e


def _read(file: str | pathlib.Path, name: str) -> tuple[pathlib.Path, bytes]:
    path = require_file_value(file, name)
    with open(path, "rb") as f:
        return path, f.read()


def load_certificate(file: str | pathlib.Path, name: str = "certificate") -> x509.Certificate:
    path, data = _read(file, name)
    certificate = parse_certificate(data, str(path))
    log.info(f"Loaded cert from file: {path}")
    return certificate


def load_certificate_request(file: str | pathlib.Path, name: str = "csr") -> x509.CertificateSigningRequest:
    path, data = _read(file, name)
    csr = parse_certificate_request(data, str(path))
    log.info(f"CSR is loaded from file: {path}, signature is valid: {csr.is_signature_valid}")
    return csr


def load_private_key(file: str | pathlib.Path, password: str | bytes | None = None, name: str = "key"):
    path, data = _read(file, name)
    private_key = parse_private_key(data, password, str(path))
    log.info(f"Private key loaded from file: {path}")
    return private_key


def certificate_pem(certificate: x509.Certificate) -> bytes:
    return certificate.public_bytes(encoding=serialization.Encoding.PEM)


def private_key_pem(private_key, password: str | bytes | None = None) -> bytes:
    """
    PKCS#8, with a password the cryptography module's best available encryption is used
    """
    if password:
        if isinstance(password, str):
            password = bytes(password, encoding="utf-8")
        encryption_algorithm = serialization.BestAvailableEncryption(password=password)
    else:
        encryption_algorithm = serialization.NoEncryption()
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption_algorithm,
    )


def cert_info(cert: x509.Certificate) -> dict:
    """Summary of a certificate for logging and the api"""
    m = {
        "serial": cert.serial_number,
        "not_before": cert.not_valid_before_utc,
        "not_after": cert.not_valid_after_utc,
        "fingerprint": cert.fingerprint(hashes.SHA256()).hex(),
        "subject": cert.subject.rfc4514_string(),
        "issuer": cert.issuer.rfc4514_string(),
    }
    common_name = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if len(common_name) > 0:
        m["common_name"] = common_name[0].value

    try:
        extension = cert.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
        sans = SubjectAlternativeNames.from_extension(extension.value)
        m["subject_alternate_names"] = {
            "dns": sans.dns_names,
            "ip": [str(ip) for ip in sans.ip_addresses],
            "email": sans.email_addresses,
            "uri": sans.uris,
        }
    except x509.ExtensionNotFound:
        log.debug("No Subject Alternate Name found")

    try:
        constraints = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
        m["ca"] = constraints.ca
        m["path_length"] = constraints.path_length
    except x509.ExtensionNotFound:
        m["ca"] = False
    return m


class CertTool:
    """
    The files of one set of artifacts, all named after the common name in the output location:
    <name>.key.pem, <name>.cert.pem, <name>.csr.pem, <name>.chain.pem and <name>.fullchain.pem
    """

    def __init__(self, location: pathlib.Path | str | None, name: str, is_ca: bool = False):
        self.location: pathlib.Path | None = None
        self.set_location(location)
        self.set_name(name, is_ca)

    def set_name(self, name: str, is_ca: bool = False):
        if name is None or name.strip() == "":
            raise InputValidationError("A name is required to save certificate files")
        self.name = name.strip().replace(" ", "_").replace("*", "_").replace("/", "_")
        if is_ca:
            self.name = f"{self.name}.ca"
        self._set_file_names()

    def set_location(self, location: pathlib.Path | str | None = None):
        if isinstance(location, str):
            self.location = pathlib.Path(location)
        elif isinstance(location, pathlib.Path):
            self.location = location
        elif location is None:
            self.location = pathlib.Path.cwd()
            log.debug(f"no location supplied using the default: {self.location}")
        else:
            raise InputValidationError(f"Invalid location type: {type(location)}")

        if self.location.exists():
            log.debug(f"Location found, re-using: {self.location}")
        else:
            try:
                self.location.mkdir(parents=True)
                log.info(f"Making the folder to store the certs in: {self.location}")
            except OSError as e:
                raise InputValidationError(
                    f"Trying to create the cert files in an invalid location: {location} - {e}"
                ) from e

    def _set_file_names(self):
        self.private_key_file: pathlib.Path = self.location / f"{self.name}.key.pem"
        self.cert_file: pathlib.Path = self.location / f"{self.name}.cert.pem"
        self.csr_file: pathlib.Path = self.location / f"{self.name}.csr.pem"
        self.chain_file: pathlib.Path = self.location / f"{self.name}.chain.pem"
        self.fullchain_file: pathlib.Path = self.location / f"{self.name}.fullchain.pem"

    def _write(self, file: pathlib.Path, data: bytes, what: str) -> pathlib.Path:
        if file.exists():
            log.warning(f"Overwriting existing {what} file: {file}")
        try:
            with open(file, "wb") as f:
                f.write(data)
        except OSError as e:
            raise InputValidationError(f"Could not save file: {file} - {e}") from e
        log.info(f"Saved file: {file}")
        return file

    def save_private_key(self, private_key, password: str | bytes | None = None) -> pathlib.Path:
        """
        Save the private key, an existing key file is kept as a backup first
        """
        if self.private_key_file.exists():
            backup_file = self.private_key_file.parent / f"{self.private_key_file.name}.bak"
            log.info(f"Making a backup of private key: {self.name} in: {backup_file}")
            shutil.copy(self.private_key_file, backup_file)
        self._write(self.private_key_file, private_key_pem(private_key, password), "private key")
        self.private_key_file.chmod(0o600)
        return self.private_key_file

    def save_cert(self, certificate: x509.Certificate) -> pathlib.Path:
        return self._write(self.cert_file, certificate_pem(certificate), "cert")

    def save_csr(self, csr: x509.CertificateSigningRequest) -> pathlib.Path:
        return self._write(
            self.csr_file,
            csr.public_bytes(encoding=serialization.Encoding.PEM),
            "certificate signing request",
        )

    def save_chain(self, certificate: x509.Certificate, parent_file: pathlib.Path) -> tuple[pathlib.Path, pathlib.Path]:
        """
        The chain file is a copy of the parent file, the full chain is the certificate followed by it
        """
        _, chain_pem = _read(parent_file, "parent")
        self._write(self.chain_file, chain_pem, "chain")
        self._write(self.fullchain_file, certificate_pem(certificate) + chain_pem, "full chain")
        return self.chain_file, self.fullchain_file
