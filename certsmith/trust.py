import logging
import pathlib
import shutil
import subprocess
import sys
import time

from certsmith.errors import TrustError
from certsmith.utils import require_file_value

log = logging.getLogger(__name__)

# anchor directory, file name pattern and the command that refreshes the store, first existing one wins
LINUX_TRUST_STORES = [
    ("/etc/pki/ca-trust/source/anchors/", "{name}-{stamp}.pem", ["update-ca-trust", "extract"]),
    ("/usr/local/share/ca-certificates/", "{name}-{stamp}.crt", ["update-ca-certificates"]),
    ("/etc/ca-certificates/trust-source/anchors/", "{name}-{stamp}.crt", ["trust", "extract-compat"]),
    ("/usr/share/pki/trust/anchors/", "{name}-{stamp}.pem", ["update-ca-certificates"]),
]


def _run(command: list[str]) -> None:
    log.debug(f"running: {' '.join(command)}")
    try:
        subprocess.run(command, check=True)
    except (OSError, subprocess.CalledProcessError) as e:
        raise TrustError(f"Trust command failed: {' '.join(command)} - {e}") from e


def trust_darwin(cert: pathlib.Path) -> None:
    _run(
        [
            "sudo", "security", "add-trusted-cert", "-d", "-r", "trustRoot",
            "-k", "/Library/Keychains/System.keychain", str(cert),
        ]
    )


def trust_linux(cert: pathlib.Path) -> None:
    for directory, pattern, refresh in LINUX_TRUST_STORES:
        if pathlib.Path(directory).exists():
            target = pathlib.Path(directory) / pattern.format(name=cert.name, stamp=int(time.time()))
            _run(["sudo", "cp", str(cert), str(target)])
            log.info(f"Certificate copied to: {target}")
            _run(["sudo", *refresh])
            return
    raise TrustError("Supported certificate management not found")


def trust_windows(cert: pathlib.Path) -> None:
    certutil = shutil.which("certutil")
    if certutil is None:
        raise TrustError("Could not find 'certutil' command")
    _run([certutil, "-addstore", "-f", "ROOT", str(cert)])


def trust_certificate(cert: str | pathlib.Path, platform: str | None = None) -> None:
    """
    Add a certificate to the operating system trust store, sudo permissions are needed
    on macOS and Linux
    """
    path = require_file_value(cert, "certificate")
    platform = platform or sys.platform
    log.info(f"Adding trusted certificate: {path}")
    if platform == "darwin":
        trust_darwin(path)
    elif platform.startswith("linux"):
        trust_linux(path)
    elif platform == "win32":
        trust_windows(path)
    else:
        raise TrustError(f"The operating system '{platform}' is currently unsupported")
