import logging
import subprocess

import pytest

from certsmith import trust
from certsmith.errors import InputValidationError, TrustError

log = logging.getLogger(__name__)


@pytest.fixture()
def commands(monkeypatch):
    ran = []

    def run(command, check):
        ran.append(command)
        return subprocess.CompletedProcess(command, 0)

    monkeypatch.setattr(trust.subprocess, "run", run)
    return ran


@pytest.fixture()
def cert_file(tmp_path):
    f = tmp_path / "test_root.ca.cert.pem"
    f.write_text("-----BEGIN CERTIFICATE-----\n")
    return f


def test_trust_darwin(commands, cert_file):
    trust.trust_certificate(cert_file, platform="darwin")
    assert commands == [
        [
            "sudo", "security", "add-trusted-cert", "-d", "-r", "trustRoot",
            "-k", "/Library/Keychains/System.keychain", str(cert_file),
        ]
    ]


def test_trust_linux_first_existing_store(commands, cert_file, tmp_path, monkeypatch):
    anchors = tmp_path / "anchors"
    anchors.mkdir()
    monkeypatch.setattr(
        trust,
        "LINUX_TRUST_STORES",
        [
            (str(tmp_path / "missing"), "{name}-{stamp}.pem", ["update-ca-trust", "extract"]),
            (str(anchors), "{name}-{stamp}.crt", ["update-ca-certificates"]),
        ],
    )
    trust.trust_certificate(cert_file, platform="linux")
    assert len(commands) == 2
    assert commands[0][:3] == ["sudo", "cp", str(cert_file)]
    assert commands[0][3].startswith(str(anchors / "test_root.ca.cert.pem-"))
    assert commands[0][3].endswith(".crt")
    assert commands[1] == ["sudo", "update-ca-certificates"]


def test_trust_linux_no_store(commands, cert_file, tmp_path, monkeypatch):
    monkeypatch.setattr(trust, "LINUX_TRUST_STORES", [(str(tmp_path / "missing"), "{name}", ["true"])])
    with pytest.raises(TrustError):
        trust.trust_certificate(cert_file, platform="linux")
    assert commands == []


def test_trust_windows(commands, cert_file, monkeypatch):
    monkeypatch.setattr(trust.shutil, "which", lambda name: "C:\\Windows\\System32\\certutil.exe")
    trust.trust_certificate(cert_file, platform="win32")
    assert commands == [["C:\\Windows\\System32\\certutil.exe", "-addstore", "-f", "ROOT", str(cert_file)]]

    monkeypatch.setattr(trust.shutil, "which", lambda name: None)
    with pytest.raises(TrustError):
        trust.trust_certificate(cert_file, platform="win32")


def test_trust_unsupported_platform(commands, cert_file):
    with pytest.raises(TrustError):
        trust.trust_certificate(cert_file, platform="plan9")


def test_trust_missing_file(commands, tmp_path):
    with pytest.raises(InputValidationError):
        trust.trust_certificate(tmp_path / "missing.pem", platform="darwin")


def test_trust_command_fails(cert_file, monkeypatch):
    def run(command, check):
        raise subprocess.CalledProcessError(1, command)

    monkeypatch.setattr(trust.subprocess, "run", run)
    with pytest.raises(TrustError):
        trust.trust_certificate(cert_file, platform="darwin")
