import argparse
import logging
import pathlib
import sys

import pydantic
import requests
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID

from certsmith import settings
from certsmith.CertTool import (
    CertTool,
    cert_info,
    load_certificate,
    load_certificate_request,
    load_private_key,
    parse_certificate,
)
from certsmith.errors import CertToolError, InputValidationError, SigningError
from certsmith.keys import KeySpec
from certsmith.request import build_certificate_request
from certsmith.settings import BuildOptions, CertConfig, SubjectOptions, VerifyOptions
from certsmith.signing import SigningHierarchyResolver
from certsmith.template import process_start_time
from certsmith.trust import trust_certificate
from certsmith.utils import configure_logging, force_string_input, split_value
from certsmith.verify import verify_certificate

__app__ = "certsmith"
__version__ = "0.1.0"

log = logging.getLogger(__name__)

proxies = {
    "http": None,
    "https": None,
}


def certificate_subject_flags(parser: argparse.ArgumentParser):
    group = parser.add_argument_group("Subject Name Options")
    group.add_argument("--country", default="",
                       help="Country Name (2 letter ISO-3166 code), any other length is rejected")
    group.add_argument("--province", default="", help="State or Province Name (full name)")
    group.add_argument("--locality", default="", help="Locality Name (eg, city)")
    group.add_argument("--street-address", dest="street_address", default="",
                       help="Street Address (eg, 123 Fake Street)")
    group.add_argument("--postal-code", dest="postal_code", default="", help="Postal Code (eg, 94016)")
    group.add_argument("--organization", default="", help="Organization Name (eg, company)")
    group.add_argument("--organizational-unit", dest="organizational_unit", default="",
                       help="Organizational Unit Name (eg, section)")
    group.add_argument("-cn", "--common-name", dest="common_name", default="",
                       help="Certificate common name, defaults to the first subject alternative name")
    group.add_argument("--email", default="", help="Email Address")
    group.add_argument("-n", "--san", default="",
                       help="Comma-delimited Subject Alternative Name(s) (DNS, Email, IP, URI)")
    group.add_argument("--no-prompt", dest="no_prompt", action="store_true",
                       help="Do not prompt for subject alternative names when none are given")


def certificate_key_flags(parser: argparse.ArgumentParser):
    group = parser.add_argument_group("Private Key Options")
    group.add_argument("--bits", type=int, help="The number of bits used to generate an RSA key (default 2048)")
    group.add_argument("--ed25519", action="store_true", help="Generate keys using the ED25519 signature algorithm")
    group.add_argument("--ecdsa", action="store_true", help="Generate keys using ECDSA elliptic curve signatures")
    group.add_argument("--curve", help="Elliptic curve used to generate the key (P224, P256, P384, P521)")
    group.add_argument("-pwd", "--password", type=str, help="password to encrypt the generated private key")


def certificate_build_flags(parser: argparse.ArgumentParser):
    group = parser.add_argument_group("Certificate Options")
    group.add_argument("--days", type=int, help="Number of days generated certificates should be valid for (default 90)")
    group.add_argument("--trust", action="store_true", help="Trust the generated certificate")
    group.add_argument("--parent", type=pathlib.Path,
                       help="PEM-encoded certificate used to sign the certificate (authority or intermediate)")
    group.add_argument("--key", type=pathlib.Path, help="PEM-encoded private key used to sign the certificate")
    group.add_argument("--key-password", dest="key_password", type=str,
                       help="password of the private key used to sign the certificate")


def location_flag(parser: argparse.ArgumentParser, default=None):
    parser.add_argument("-l", "--location", dest="location", type=pathlib.Path, default=default,
                        help=f"location to store certs and keys, defaults to: {settings.default_location}")


def path_length_flag(parser: argparse.ArgumentParser):
    parser.add_argument("--path-length", dest="path_length", type=int, default=0,
                        help="Maximum number of non-self-issued intermediate certificates that may follow "
                             "this certificate in a valid certification path")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse the programme arguments
    :return: arguments
    """
    parser = argparse.ArgumentParser(description="PKI certificate tools", prog=__app__)
    parser.add_argument("-ll", "--log-level", choices=["debug", "info"], type=str,
                        help="log detail, debug all, info less (default is info)")
    parser.add_argument("-v", "--version", help="get version information then exit",
                        action="store_true")  # no extra value after the parameter
    parser.add_argument("--ini", type=pathlib.Path, default=settings.default_ini_file,
                        help=f"ini file with default settings, defaults to: {settings.default_ini_file}")
    parser.set_defaults(func=None)

    commands = parser.add_subparsers(dest="command", title="commands")

    authority = commands.add_parser("authority", aliases=["ca"], help="Create a PKI certificate authority")
    certificate_subject_flags(authority)
    certificate_key_flags(authority)
    certificate_build_flags(authority)
    path_length_flag(authority)
    location_flag(authority)
    authority.set_defaults(func=command_authority)

    certificate = commands.add_parser("certificate", aliases=["cert"], help="Create a PKI certificate")
    certificate_subject_flags(certificate)
    certificate_key_flags(certificate)
    certificate_build_flags(certificate)
    location_flag(certificate)
    certificate.add_argument("--allow-self-signed", dest="allow_self_signed", action="store_true",
                             help="Self sign the certificate when no parent certificate and key are given")
    certificate.set_defaults(func=command_certificate)

    request = commands.add_parser("request", aliases=["csr"], help="Create a PKI certificate signing request")
    certificate_subject_flags(request)
    certificate_key_flags(request)
    location_flag(request)
    request.add_argument("-u", "--ca-url", dest="ca_url", type=str,
                         help="URL of a certsmith api to send the signing request to")
    request.set_defaults(func=command_request)

    request_commands = request.add_subparsers(dest="request_command")
    sign = request_commands.add_parser("sign", help="Create a PKI certificate from a signing request")
    sign.add_argument("csr", type=pathlib.Path, help="PEM-encoded certificate signing request")
    certificate_build_flags(sign)
    # keep a location given to the request command before sign
    location_flag(sign, default=argparse.SUPPRESS)
    # the subject of a signed request comes from the request, never prompt for it
    sign.set_defaults(func=command_request_sign, no_prompt=True)

    trust = commands.add_parser("trust", help="Trust PKI certificates")
    trust.add_argument("certificates", nargs="+", type=pathlib.Path, help="certificate files to trust")
    trust.set_defaults(func=command_trust)

    verify = commands.add_parser("verify", help="Verify a PKI certificate")
    verify.add_argument("certificate", type=pathlib.Path, help="PEM-encoded certificate to verify")
    verify.add_argument("--host", dest="hosts", action="append", default=[],
                        help="Host name to verify, repeat or comma-delimit for several")
    verify.add_argument("--root", type=pathlib.Path, help="Trusted root certificate")
    verify.add_argument("--intermediate", type=pathlib.Path, help="Intermediate certificate")
    verify.set_defaults(func=command_verify)

    args = parser.parse_args(argv)
    args.parser = parser
    return args


def _pick(value, ini: dict, setting: str):
    """command line value first, then the ini file, otherwise None for the model default"""
    if value is not None:
        return value
    return ini.get(setting)


def _config_values(args: argparse.Namespace, ini: dict[str, str]) -> dict:
    values = {}
    location = _pick(getattr(args, "location", None), ini, "location")
    if location is not None:
        values["location"] = location

    if hasattr(args, "common_name"):
        san = args.san
        if san.strip() == "" and args.common_name.strip() == "" and args.no_prompt is False:
            san = force_string_input(san, "Subject Alternative Name(s) (e.g. subdomains) []: ")
        values["subject"] = SubjectOptions(
            country=args.country,
            province=args.province,
            locality=args.locality,
            street_address=args.street_address,
            postal_code=args.postal_code,
            organization=args.organization,
            organizational_unit=args.organizational_unit,
            common_name=args.common_name,
            email=args.email,
            san=san,
        )

    if hasattr(args, "bits"):
        if args.ed25519:
            algorithm = "ed25519"
        elif args.ecdsa:
            algorithm = "ecdsa"
        else:
            algorithm = ini.get("algorithm")
        key = {
            "algorithm": algorithm,
            "bits": _pick(args.bits, ini, "bits"),
            "curve": _pick(args.curve, ini, "curve"),
        }
        values["key"] = KeySpec(**{k: v for k, v in key.items() if v is not None})

    if hasattr(args, "days"):
        build = {
            "days": _pick(args.days, ini, "days"),
            "path_len_constraint": getattr(args, "path_length", None),
            "allow_self_signed": getattr(args, "allow_self_signed", False),
            "trust": args.trust,
            "authority_cert": _pick(args.parent, ini, "authority_cert"),
            "authority_key": _pick(args.key, ini, "authority_key"),
            "csr": getattr(args, "csr", None),
        }
        values["build"] = BuildOptions(**{k: v for k, v in build.items() if v is not None})

    if hasattr(args, "hosts"):
        hosts = []
        for host in args.hosts:
            hosts += split_value(host, ",")
        values["verify"] = VerifyOptions(hosts=tuple(hosts), root=args.root, intermediate=args.intermediate)

    return values


def build_config(args: argparse.Namespace, ini: dict[str, str]) -> CertConfig:
    """
    Turn the parsed arguments and ini settings into the configuration for this run
    """
    try:
        return CertConfig(**_config_values(args, ini))
    except pydantic.ValidationError as e:
        raise InputValidationError(f"Invalid settings: {e}") from e


def _certificate_name(certificate: x509.Certificate) -> str:
    """common name of the certificate, else its first DNS name"""
    common_name = certificate.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if len(common_name) > 0:
        return str(common_name[0].value)
    try:
        san = certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        dns_names = san.get_values_for_type(x509.DNSName)
        if len(dns_names) > 0:
            return dns_names[0]
    except x509.ExtensionNotFound:
        pass
    return "certificate"


def build_certificate(config: CertConfig, is_ca: bool, password: str | None = None,
                      key_password: str | None = None) -> CertTool:
    """
    Build, sign and save a certificate, with its private key and chain files when there are any
    """
    build = config.build
    authority_cert = authority_key = request = None
    if build.authority_cert is not None or build.authority_key is not None:
        authority_cert = load_certificate(build.authority_cert, "parent") if build.authority_cert else None
        authority_key = load_private_key(build.authority_key, key_password, "key") if build.authority_key else None
    if build.csr is not None:
        request = load_certificate_request(build.csr, "csr")

    issued = SigningHierarchyResolver(config).issue(
        is_ca, authority_certificate=authority_cert, authority_key=authority_key, request=request
    )

    cert_tool = CertTool(config.location, _certificate_name(issued.certificate), is_ca=is_ca)
    cert_tool.save_cert(issued.certificate)
    if build.authority_cert is not None and issued.authority is not None:
        cert_tool.save_chain(issued.certificate, build.authority_cert)
    if issued.private_key is not None:
        cert_tool.save_private_key(issued.private_key, password)
    log.debug(cert_info(issued.certificate))

    if build.trust:
        trust_certificate(cert_tool.cert_file)
    return cert_tool


def send_csr_to_ca_url(ca_url: str, csr: x509.CertificateSigningRequest, cert_tool: CertTool,
                       days: int | None = None) -> x509.Certificate:
    """
    Post the signing request to a certsmith api and save the certificate it returns
    """
    url = f"{ca_url.rstrip('/')}/sign_csr"
    payload = {"csr": csr.public_bytes(serialization.Encoding.PEM).decode("utf-8")}
    if days is not None:
        payload["days"] = days
    log.info(f"Sending csr to the CA: {url}")
    try:
        response = requests.post(url, json=payload, proxies=proxies, timeout=30)
    except requests.RequestException as e:
        raise SigningError(f"Unable to contact the ca: {e} - {ca_url}") from e
    if response.status_code != 200:
        raise SigningError(f"CA refused to sign the csr: {response.status_code} - {response.text}")
    certificate = parse_certificate(response.content, url)
    cert_tool.save_cert(certificate)
    return certificate


def command_authority(args: argparse.Namespace, config: CertConfig):
    build_certificate(config, is_ca=True, password=args.password, key_password=args.key_password)


def command_certificate(args: argparse.Namespace, config: CertConfig):
    build_certificate(config, is_ca=False, password=args.password, key_password=args.key_password)


def command_request(args: argparse.Namespace, config: CertConfig):
    private_key, csr = build_certificate_request(config)
    subject = config.subject.with_default_common_name()
    cert_tool = CertTool(config.location, subject.common_name)
    cert_tool.save_private_key(private_key, args.password)
    cert_tool.save_csr(csr)
    if args.ca_url:
        send_csr_to_ca_url(args.ca_url, csr, cert_tool)


def command_request_sign(args: argparse.Namespace, config: CertConfig):
    build_certificate(config, is_ca=False, key_password=args.key_password)


def command_trust(args: argparse.Namespace, config: CertConfig):
    log.info("Sudo permissions are required to trust certificates")
    for certificate in args.certificates:
        trust_certificate(certificate)


def command_verify(args: argparse.Namespace, config: CertConfig):
    options = config.verify
    certificate = load_certificate(args.certificate, "certificate")
    root = load_certificate(options.root, "root") if options.root else None
    intermediate = load_certificate(options.intermediate, "intermediate") if options.intermediate else None
    verify_certificate(certificate, root=root, intermediate=intermediate, hosts=options.hosts)


def run(argv: list[str] | None = None) -> int:
    """Run one command, every certsmith error ends here as exit status 1"""
    # not valid before time of every certificate built in this run
    process_start_time()
    args = parse_args(argv)
    configure_logging(args.log_level)

    if args.version:
        log.info(f"Application: {__app__} - Version: {__version__}")
        return 0

    if args.func is None:
        args.parser.print_help()
        return 0

    try:
        config = build_config(args, settings.ini_defaults(args.ini))
        args.func(args, config)
    except CertToolError as e:
        log.critical(str(e))
        return 1
    return 0


def main():
    sys.exit(run())


if __name__ == "__main__":
    main()
