import configparser
import logging
import pathlib

from pydantic import BaseModel, ConfigDict, Field

from certsmith.errors import InputValidationError
from certsmith.keys import KeySpec
from certsmith.utils import split_value

log = logging.getLogger(__name__)

default_ini_file: pathlib.Path = pathlib.Path().cwd() / "settings" / "certsmith.ini"
default_location: pathlib.Path = pathlib.Path().cwd() / "certs"


class SubjectOptions(BaseModel):
    """Identity of the certificate or request subject, every field is optional"""

    model_config = ConfigDict(frozen=True)

    country: str = ""
    province: str = ""
    locality: str = ""
    street_address: str = ""
    postal_code: str = ""
    organization: str = ""
    organizational_unit: str = ""
    common_name: str = ""
    email: str = ""
    # comma delimited subject alternative names, classified later
    san: str = ""

    def hosts(self) -> list[str]:
        return split_value(self.san, ",")

    def with_default_common_name(self) -> "SubjectOptions":
        """
        When no common name is given the first subject alternative name is used,
        having neither is an error
        """
        if self.common_name.strip() != "":
            return self
        hosts = self.hosts()
        if len(hosts) == 0:
            raise InputValidationError(
                "A common name or at least one subject alternative name is required"
            )
        log.debug(f"common name defaulted to the first subject alternative name: {hosts[0]}")
        return self.model_copy(update={"common_name": hosts[0]})


class BuildOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    days: int = 90
    path_len_constraint: int = 0
    # leaf certificates are only self-signed when asked for
    allow_self_signed: bool = False
    trust: bool = False
    authority_cert: pathlib.Path | None = None
    authority_key: pathlib.Path | None = None
    csr: pathlib.Path | None = None


class VerifyOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    hosts: tuple[str, ...] = ()
    root: pathlib.Path | None = None
    intermediate: pathlib.Path | None = None


class CertConfig(BaseModel):
    """
    Resolved configuration for one invocation, built once and handed down the pipeline
    """

    model_config = ConfigDict(frozen=True)

    location: pathlib.Path = default_location
    subject: SubjectOptions = Field(default_factory=SubjectOptions)
    key: KeySpec = Field(default_factory=KeySpec)
    build: BuildOptions = Field(default_factory=BuildOptions)
    verify: VerifyOptions = Field(default_factory=VerifyOptions)


def ini_defaults(ini_file: pathlib.Path | None = default_ini_file) -> dict[str, str]:
    """
    All the settings of the default section, an absent file gives no settings
    """
    if ini_file is None or pathlib.Path(ini_file).exists() is False:
        log.debug(f"Ini settings file not found: {ini_file}")
        return {}
    config = configparser.ConfigParser()
    try:
        config.read(ini_file)
    except configparser.Error as e:
        raise InputValidationError(f"ini file problem: {ini_file} - {e}") from e
    if "default" not in config:
        log.warning(f"Ini settings file has no default section: {ini_file}")
        return {}
    values = dict(config["default"])
    log.info(f"Ini settings file used: {ini_file} - settings: {sorted(values)}")
    return values
