import dataclasses
import ipaddress
import logging
import re
import urllib.parse
from typing import Iterable, List

from cryptography import x509
from email_validator import SPECIAL_USE_DOMAIN_NAMES, EmailNotValidError, validate_email
from email_validator.syntax import validate_email_local_part

log = logging.getLogger(__name__)

IPAddressTypes = ipaddress.IPv4Address | ipaddress.IPv6Address

HOST_LABEL = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$", re.IGNORECASE)


@dataclasses.dataclass
class SubjectAlternativeNames:
    """Subject alternative names in four buckets, each kept in input order"""

    dns_names: List[str] = dataclasses.field(default_factory=list)
    ip_addresses: List[IPAddressTypes] = dataclasses.field(default_factory=list)
    email_addresses: List[str] = dataclasses.field(default_factory=list)
    uris: List[str] = dataclasses.field(default_factory=list)
    # general names of other types, only found when copying from a request
    others: List[x509.GeneralName] = dataclasses.field(default_factory=list)

    def __len__(self):
        return (
            len(self.dns_names)
            + len(self.ip_addresses)
            + len(self.email_addresses)
            + len(self.uris)
            + len(self.others)
        )

    def has_network_names(self) -> bool:
        """DNS, IP or URI entries, the ones used for server and client authentication"""
        return bool(self.dns_names or self.ip_addresses or self.uris)

    def has_email_addresses(self) -> bool:
        return bool(self.email_addresses)

    def general_names(self) -> list[x509.GeneralName]:
        names: list[x509.GeneralName] = [x509.DNSName(n) for n in self.dns_names]
        names += [x509.RFC822Name(e) for e in self.email_addresses]
        names += [x509.IPAddress(ip) for ip in self.ip_addresses]
        names += [x509.UniformResourceIdentifier(u) for u in self.uris]
        names += self.others
        return names

    def extension(self) -> x509.SubjectAlternativeName | None:
        if len(self) == 0:
            return None
        return x509.SubjectAlternativeName(self.general_names())

    @classmethod
    def from_extension(cls, san: x509.SubjectAlternativeName) -> "SubjectAlternativeNames":
        known = (x509.DNSName, x509.IPAddress, x509.RFC822Name, x509.UniformResourceIdentifier)
        return cls(
            dns_names=san.get_values_for_type(x509.DNSName),
            ip_addresses=san.get_values_for_type(x509.IPAddress),
            email_addresses=san.get_values_for_type(x509.RFC822Name),
            uris=san.get_values_for_type(x509.UniformResourceIdentifier),
            others=[name for name in san if not isinstance(name, known)],
        )


def _is_ip_address(value: str) -> IPAddressTypes | None:
    try:
        return ipaddress.ip_address(value)
    except ValueError:
        return None


def _is_special_use_domain(domain: str) -> bool:
    domain = domain.lower()
    return any(domain == d or domain.endswith(f".{d}") for d in SPECIAL_USE_DOMAIN_NAMES)


def _is_email_address(value: str) -> bool:
    """
    A single address whose parsed form is the input, the domain compared without case.
    'Name <a@b.c>' is not one. email-validator refuses special use domains such as localhost,
    for those only the local part is validated and the domain has to be a host name.
    """
    local, at, domain = value.rpartition("@")
    if at == "" or local == "" or domain == "":
        return False

    if _is_special_use_domain(domain):
        try:
            local_part = validate_email_local_part(local)["local_part"]
        except EmailNotValidError:
            return False
        return local_part == local and all(HOST_LABEL.match(label) for label in domain.split("."))

    try:
        email = validate_email(
            value, check_deliverability=False, globally_deliverable=False, test_environment=True
        )
    except EmailNotValidError:
        return False
    return email.local_part == local and email.domain.lower() == domain.lower()


def _is_uri(value: str) -> bool:
    try:
        parts = urllib.parse.urlsplit(value)
        return parts.scheme != "" and bool(parts.hostname)
    except ValueError:
        return False


def classify_san(entries: Iterable[str]) -> SubjectAlternativeNames:
    """
    Sort each entry into exactly one bucket, first match wins: IP address, email address, URI
    and finally DNS name. The order is part of the behaviour: an entry that is a valid email
    address is never a DNS name and a bare domain is never a URI.
    """
    sans = SubjectAlternativeNames()
    for value in entries:
        ip = _is_ip_address(value)
        if ip is not None:
            sans.ip_addresses.append(ip)
        elif _is_email_address(value):
            sans.email_addresses.append(value)
        elif _is_uri(value):
            sans.uris.append(value)
        else:
            sans.dns_names.append(value)
    log.debug(
        f"subject alternative names: dns: {sans.dns_names} - ip: {[str(ip) for ip in sans.ip_addresses]} - "
        f"email: {sans.email_addresses} - uri: {sans.uris}"
    )
    return sans
