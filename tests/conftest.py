import logging

import pytest

from certsmith.keys import KeySpec
from certsmith.settings import BuildOptions, CertConfig, SubjectOptions
from certsmith.signing import SigningHierarchyResolver

log = logging.getLogger(__name__)

# ecdsa keys keep the tests quick, rsa generation is covered in test_keys
test_key = KeySpec(algorithm="ecdsa", curve="P256")


def make_config(common_name: str = "", san: str = "", days: int = 90, path_length: int = 0,
                allow_self_signed: bool = False, location=None, key: KeySpec = test_key) -> CertConfig:
    values = {
        "subject": SubjectOptions(common_name=common_name, san=san),
        "key": key,
        "build": BuildOptions(days=days, path_len_constraint=path_length, allow_self_signed=allow_self_signed),
    }
    if location is not None:
        values["location"] = location
    return CertConfig(**values)


@pytest.fixture()
def root_ca():
    """self signed authority that allows one intermediate below it"""
    return SigningHierarchyResolver(make_config(common_name="test root", path_length=1)).issue(True)


@pytest.fixture()
def intermediate_ca(root_ca):
    return SigningHierarchyResolver(make_config(common_name="test intermediate")).issue(
        True,
        authority_certificate=root_ca.certificate,
        authority_key=root_ca.private_key,
    )


@pytest.fixture()
def config_factory():
    return make_config
