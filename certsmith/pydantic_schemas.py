import pathlib
from typing import List, Optional

from pydantic import BaseModel


class SignRequestModel(BaseModel):
    # PEM encoded certificate signing request
    csr: str
    days: Optional[int] = None


class VerifyRequestModel(BaseModel):
    # PEM encoded certificate, checked against the authority certificate as the root
    certificate: str
    intermediate: Optional[str] = None
    hosts: List[str] = []


class VerifyResultModel(BaseModel):
    verified: bool
    detail: str


class AuthorityInfoModel(BaseModel):
    authority_subject: str
    authority_issuer: str
    authority_not_valid_before: str
    authority_not_valid_after: str
    authority_serial_number: str
    authority_fingerprint: str
    authority_path_length: Optional[int] = None


class ApiSettingsModel(BaseModel):
    common_name: str
    location: pathlib.Path
    days: int = 90
    key_password: Optional[str] = None


class CAInfoModel(BaseModel):
    common_name: str
    location: pathlib.Path
    days: int
