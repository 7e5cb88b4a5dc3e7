import datetime
import ipaddress
import logging
from typing import Iterable

import certifi
from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.x509.oid import ExtendedKeyUsageOID

from certsmith.errors import VerificationError

log = logging.getLogger(__name__)

SERVER_USAGES = (ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.ANY_EXTENDED_KEY_USAGE)


def default_roots() -> list[x509.Certificate]:
    """The certifi CA bundle, used when no root certificate is given"""
    with open(certifi.where(), "rb") as f:
        return x509.load_pem_x509_certificates(f.read())


def _name(certificate: x509.Certificate) -> str:
    return certificate.subject.rfc4514_string()


def _find_issuer(certificate: x509.Certificate, candidates: list[x509.Certificate]) -> x509.Certificate | None:
    for candidate in candidates:
        if candidate.subject != certificate.issuer:
            continue
        try:
            certificate.verify_directly_issued_by(candidate)
        except (InvalidSignature, UnsupportedAlgorithm, ValueError, TypeError) as e:
            log.debug(f"{_name(candidate)} did not sign {_name(certificate)}: {e!r}")
            continue
        return candidate
    return None


def build_chain(
    certificate: x509.Certificate,
    roots: list[x509.Certificate],
    intermediates: list[x509.Certificate],
) -> list[x509.Certificate]:
    """
    The chain from the certificate up to a root, a root given as the certificate itself is a chain of one
    """
    chain = [certificate]
    pool = list(intermediates)
    current = certificate
    while current not in roots:
        issuer = _find_issuer(current, roots)
        if issuer is not None:
            chain.append(issuer)
            break
        issuer = _find_issuer(current, pool)
        if issuer is None:
            raise VerificationError(
                f"Certificate could not be verified: {_name(current)} is signed by an unknown authority: "
                f"{current.issuer.rfc4514_string()}"
            )
        pool.remove(issuer)
        chain.append(issuer)
        current = issuer
    return chain


def _check_validity(certificate: x509.Certificate, at_time: datetime.datetime) -> None:
    if at_time < certificate.not_valid_before_utc or at_time > certificate.not_valid_after_utc:
        raise VerificationError(
            f"Certificate could not be verified: {_name(certificate)} is not valid at {at_time.isoformat()}, "
            f"valid from {certificate.not_valid_before_utc.isoformat()} "
            f"to {certificate.not_valid_after_utc.isoformat()}"
        )


def _check_issuer(issuer: x509.Certificate, intermediates_below: int) -> None:
    """An issuer must be a CA and its path length has to allow the intermediates below it"""
    try:
        constraints = issuer.extensions.get_extension_for_class(x509.BasicConstraints).value
    except x509.ExtensionNotFound:
        constraints = None
    if constraints is None or constraints.ca is False:
        raise VerificationError(f"Certificate could not be verified: {_name(issuer)} is not a CA")
    if constraints.path_length is not None and intermediates_below > constraints.path_length:
        raise VerificationError(
            f"Certificate could not be verified: path length of {_name(issuer)} is "
            f"{constraints.path_length}, {intermediates_below} intermediates follow it"
        )


def _match_dns_name(pattern: str, host: str) -> bool:
    """Exact match, or a wildcard standing for the single left most label"""
    pattern = pattern.rstrip(".").lower()
    if pattern == host:
        return True
    if pattern.startswith("*."):
        label, _, rest = host.partition(".")
        return label != "" and rest == pattern[2:]
    return False


def matches_host(certificate: x509.Certificate, host: str) -> bool:
    """IP hosts are matched against IP address entries, everything else against DNS names"""
    try:
        san = certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return False
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        ip = None
    if ip is not None:
        return ip in san.get_values_for_type(x509.IPAddress)
    host = host.rstrip(".").lower()
    return any(_match_dns_name(name, host) for name in san.get_values_for_type(x509.DNSName))


def _check_host(certificate: x509.Certificate, host: str) -> None:
    log.debug(f"verifying {_name(certificate)} for host: {host}")
    if matches_host(certificate, host) is False:
        raise VerificationError(f"Certificate could not be verified: {_name(certificate)} is not valid for {host}")
    try:
        usages = certificate.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
    except x509.ExtensionNotFound:
        return
    if not any(usage in SERVER_USAGES for usage in usages):
        raise VerificationError(
            f"Certificate could not be verified: {_name(certificate)} is not valid for server authentication"
        )


def verify_certificate(
    certificate: x509.Certificate,
    root: x509.Certificate | None = None,
    intermediate: x509.Certificate | None = None,
    hosts: Iterable[str] = (),
    at_time: datetime.datetime | None = None,
) -> None:
    """
    Verify the chain up to the root, then once per host name stopping at the first failure
    :raises VerificationError: untrusted chain, expired certificate or host name mismatch
    """
    roots = [root] if root is not None else default_roots()
    intermediates = [intermediate] if intermediate is not None else []
    hosts = [h.strip() for h in hosts if h.strip() != ""]
    at_time = at_time or datetime.datetime.now(datetime.timezone.utc)

    chain = build_chain(certificate, roots, intermediates)
    for c in chain:
        _check_validity(c, at_time)
    for position, issuer in enumerate(chain[1:], start=1):
        _check_issuer(issuer, position - 1)

    for host in hosts:
        _check_host(certificate, host)

    log.info(f"Certificate verified successfully: {_name(certificate)}")
