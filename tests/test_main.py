import logging
import pathlib

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec

from certsmith import main, signing, template
from certsmith.CertTool import load_certificate, load_certificate_request, load_private_key

log = logging.getLogger(__name__)


@pytest.fixture(autouse=True)
def keep_test_logging(monkeypatch):
    # the command line takes over the root logger, leave it to pytest
    monkeypatch.setattr(main, "configure_logging", lambda log_level: None)


def cli(tmp_path: pathlib.Path, *args: str) -> int:
    return main.run(["--ini", str(tmp_path / "missing.ini"), *args])


@pytest.fixture()
def authority(tmp_path) -> tuple[pathlib.Path, pathlib.Path]:
    exit_code = cli(
        tmp_path, "ca", "-cn", "test root", "--ecdsa", "--path-length", "1", "--days", "365",
        "--no-prompt", "-l", str(tmp_path),
    )
    assert exit_code == 0
    return tmp_path / "test_root.ca.cert.pem", tmp_path / "test_root.ca.key.pem"


def test_version():
    assert main.run(["-v"]) == 0


def test_no_command():
    assert main.run([]) == 0


def test_authority(authority, tmp_path):
    cert_file, key_file = authority
    certificate = load_certificate(cert_file)
    assert certificate.issuer == certificate.subject
    constraints = certificate.extensions.get_extension_for_class(x509.BasicConstraints).value
    assert constraints.ca is True
    assert constraints.path_length == 1
    assert (certificate.not_valid_after_utc - certificate.not_valid_before_utc).days == 365
    assert isinstance(load_private_key(key_file), ec.EllipticCurvePrivateKey)
    assert (tmp_path / "test_root.ca.chain.pem").exists() is False


def test_certificate_signed_by_authority(authority, tmp_path):
    cert_file, key_file = authority
    exit_code = cli(
        tmp_path, "cert", "--san", "example.com, 192.0.2.10", "--ecdsa",
        "--parent", str(cert_file), "--key", str(key_file), "-l", str(tmp_path),
    )
    assert exit_code == 0
    leaf_file = tmp_path / "example.com.cert.pem"
    leaf = load_certificate(leaf_file)
    assert leaf.issuer == load_certificate(cert_file).subject
    assert (tmp_path / "example.com.key.pem").exists()
    assert (tmp_path / "example.com.chain.pem").read_bytes() == cert_file.read_bytes()
    assert (tmp_path / "example.com.fullchain.pem").read_bytes() == leaf_file.read_bytes() + cert_file.read_bytes()

    assert cli(tmp_path, "verify", str(leaf_file), "--root", str(cert_file), "--host", "example.com,192.0.2.10") == 0
    assert cli(tmp_path, "verify", str(leaf_file), "--root", str(cert_file), "--host", "api.example.com") == 1


def test_certificate_with_intermediate(authority, tmp_path):
    cert_file, key_file = authority
    assert cli(
        tmp_path, "ca", "-cn", "test intermediate", "--ecdsa", "--no-prompt",
        "--parent", str(cert_file), "--key", str(key_file), "-l", str(tmp_path),
    ) == 0
    intermediate_file = tmp_path / "test_intermediate.ca.cert.pem"
    assert cli(
        tmp_path, "cert", "--san", "api.example.com", "--ecdsa",
        "--parent", str(intermediate_file), "--key", str(tmp_path / "test_intermediate.ca.key.pem"),
        "-l", str(tmp_path),
    ) == 0
    leaf_file = tmp_path / "api.example.com.cert.pem"
    verify = ["verify", str(leaf_file), "--root", str(cert_file), "--host", "api.example.com"]
    assert cli(tmp_path, *verify, "--intermediate", str(intermediate_file)) == 0
    assert cli(tmp_path, *verify) == 1


def test_certificate_needs_authority(tmp_path):
    assert cli(tmp_path, "cert", "--san", "example.com", "--ecdsa", "-l", str(tmp_path)) == 1
    assert (tmp_path / "example.com.cert.pem").exists() is False

    assert cli(tmp_path, "cert", "--san", "example.com", "--ecdsa", "--allow-self-signed", "-l", str(tmp_path)) == 0
    certificate = load_certificate(tmp_path / "example.com.cert.pem")
    assert certificate.issuer == certificate.subject


def test_missing_parent_file(tmp_path, authority):
    _, key_file = authority
    assert cli(
        tmp_path, "cert", "--san", "example.com", "--ecdsa",
        "--parent", str(tmp_path / "missing.pem"), "--key", str(key_file), "-l", str(tmp_path),
    ) == 1


def test_password_protected_authority(tmp_path):
    assert cli(
        tmp_path, "ca", "-cn", "locked root", "--ecdsa", "-pwd", "secret", "--no-prompt", "-l", str(tmp_path)
    ) == 0
    cert_file, key_file = tmp_path / "locked_root.ca.cert.pem", tmp_path / "locked_root.ca.key.pem"
    leaf = ["cert", "--san", "example.com", "--ecdsa", "--parent", str(cert_file), "--key", str(key_file),
            "-l", str(tmp_path)]
    assert cli(tmp_path, *leaf) == 1
    assert cli(tmp_path, *leaf, "--key-password", "secret") == 0


def test_request_and_sign(authority, tmp_path):
    cert_file, key_file = authority
    assert cli(tmp_path, "csr", "--san", "api.example.com", "--ecdsa", "--curve", "p384", "-l", str(tmp_path)) == 0
    csr_file = tmp_path / "api.example.com.csr.pem"
    csr = load_certificate_request(csr_file)
    private_key = load_private_key(tmp_path / "api.example.com.key.pem")
    assert isinstance(private_key.curve, ec.SECP384R1)
    assert (tmp_path / "api.example.com.cert.pem").exists() is False

    assert cli(
        tmp_path, "csr", "sign", str(csr_file), "--days", "30",
        "--parent", str(cert_file), "--key", str(key_file), "-l", str(tmp_path),
    ) == 0
    certificate = load_certificate(tmp_path / "api.example.com.cert.pem")
    assert certificate.subject == csr.subject
    assert certificate.public_key() == private_key.public_key()
    assert (certificate.not_valid_after_utc - certificate.not_valid_before_utc).days == 30
    # signing does not replace the key of the request
    assert load_private_key(tmp_path / "api.example.com.key.pem").public_key() == private_key.public_key()


def test_sign_needs_authority(tmp_path):
    assert cli(tmp_path, "csr", "--san", "api.example.com", "--ecdsa", "-l", str(tmp_path)) == 0
    assert cli(tmp_path, "csr", "sign", str(tmp_path / "api.example.com.csr.pem"), "-l", str(tmp_path)) == 1


def test_prompt_for_san(tmp_path, monkeypatch):
    monkeypatch.setattr("builtins.input", lambda message: "prompted.example.com")
    assert cli(tmp_path, "cert", "--ecdsa", "--allow-self-signed", "-l", str(tmp_path)) == 0
    assert (tmp_path / "prompted.example.com.cert.pem").exists()


def test_no_prompt_and_no_name(tmp_path, monkeypatch):
    def no_input(message):
        raise AssertionError("prompted")

    monkeypatch.setattr("builtins.input", no_input)
    assert cli(tmp_path, "cert", "--ecdsa", "--allow-self-signed", "--no-prompt", "-l", str(tmp_path)) == 1


def test_ini_defaults(tmp_path):
    ini_file = tmp_path / "certsmith.ini"
    ini_file.write_text(
        f"[default]\nlocation = {tmp_path / 'from-ini'}\ndays = 10\nalgorithm = ecdsa\ncurve = P384\n"
    )
    assert main.run(["--ini", str(ini_file), "ca", "-cn", "ini root", "--no-prompt"]) == 0
    certificate = load_certificate(tmp_path / "from-ini" / "ini_root.ca.cert.pem")
    assert (certificate.not_valid_after_utc - certificate.not_valid_before_utc).days == 10
    assert isinstance(certificate.public_key().curve, ec.SECP384R1)

    # the command line wins over the ini file
    assert main.run(["--ini", str(ini_file), "ca", "-cn", "cli root", "--days", "20", "--no-prompt",
                     "-l", str(tmp_path)]) == 0
    certificate = load_certificate(tmp_path / "cli_root.ca.cert.pem")
    assert (certificate.not_valid_after_utc - certificate.not_valid_before_utc).days == 20


def test_invalid_ini_value(tmp_path):
    ini_file = tmp_path / "certsmith.ini"
    ini_file.write_text("[default]\ndays = many\n")
    assert main.run(["--ini", str(ini_file), "ca", "-cn", "root", "--no-prompt", "-l", str(tmp_path)]) == 1


def test_trust_flag(authority, tmp_path, monkeypatch):
    trusted = []
    monkeypatch.setattr(main, "trust_certificate", lambda cert: trusted.append(cert))
    cert_file, key_file = authority
    assert cli(
        tmp_path, "cert", "--san", "example.com", "--ecdsa", "--trust",
        "--parent", str(cert_file), "--key", str(key_file), "-l", str(tmp_path),
    ) == 0
    assert trusted == [tmp_path / "example.com.cert.pem"]

    assert cli(tmp_path, "trust", str(cert_file)) == 0
    assert trusted[-1] == cert_file


def test_location_before_sign(authority, tmp_path):
    cert_file, key_file = authority
    assert cli(tmp_path, "csr", "--san", "api.example.com", "--ecdsa", "-l", str(tmp_path)) == 0
    signed = tmp_path / "signed"
    assert cli(
        tmp_path, "csr", "-l", str(signed), "sign", str(tmp_path / "api.example.com.csr.pem"),
        "--parent", str(cert_file), "--key", str(key_file),
    ) == 0
    assert (signed / "api.example.com.cert.pem").exists()
    assert (tmp_path / "api.example.com.cert.pem").exists() is False


def test_start_time_taken_before_key_generation(tmp_path, monkeypatch):
    generate = signing.generate_private_key

    def generate_after_start(spec):
        assert template.process_start_time.cache_info().currsize == 1
        return generate(spec)

    template.process_start_time.cache_clear()
    monkeypatch.setattr(signing, "generate_private_key", generate_after_start)
    assert cli(tmp_path, "ca", "-cn", "timed root", "--ecdsa", "--no-prompt", "-l", str(tmp_path)) == 0
    certificate = load_certificate(tmp_path / "timed_root.ca.cert.pem")
    assert certificate.not_valid_before_utc == template.process_start_time()


def test_three_letter_country(tmp_path):
    assert cli(tmp_path, "ca", "-cn", "test root", "--country", "NZL", "--ecdsa", "--no-prompt", "-l", str(tmp_path)) == 1
    assert (tmp_path / "test_root.ca.cert.pem").exists() is False
