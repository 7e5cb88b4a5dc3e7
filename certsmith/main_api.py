import argparse
import datetime
import logging
import pathlib
import sys

import uvicorn
from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import FileResponse, Response
from starlette import status

from certsmith import settings
from certsmith.CertTool import (
    CertTool,
    cert_info,
    certificate_pem,
    load_certificate,
    load_private_key,
    parse_certificate,
    parse_certificate_request,
)
from certsmith.errors import CertToolError, InputValidationError, ParseError, SigningError, VerificationError
from certsmith.pydantic_schemas import (
    ApiSettingsModel,
    AuthorityInfoModel,
    CAInfoModel,
    SignRequestModel,
    VerifyRequestModel,
    VerifyResultModel,
)
from certsmith.settings import BuildOptions, CertConfig
from certsmith.signing import SigningHierarchyResolver
from certsmith.utils import configure_logging
from certsmith.verify import verify_certificate

__app__ = "certsmith_api"
__version__ = "0.1.0"

log = logging.getLogger(__name__)

app = FastAPI()

_settings = ApiSettingsModel(common_name="root cert", location=settings.default_location)


def depends_settings() -> ApiSettingsModel:
    return _settings


def authority_tool(api_settings: ApiSettingsModel) -> CertTool:
    return CertTool(location=api_settings.location, name=api_settings.common_name, is_ca=True)


def _http_error(e: CertToolError) -> HTTPException:
    if isinstance(e, (ParseError, InputValidationError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, SigningError):
        return HTTPException(status_code=422, detail=str(e))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


def _authority_not_found(api_settings: ApiSettingsModel) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Certificate authority not found for location: {api_settings.location}, "
               f"common name: {api_settings.common_name}",
    )


@app.get("/")
async def root(api_settings=Depends(depends_settings)):
    return {"message": f"Hello World, {api_settings.common_name} api"}


@app.get("/config", response_model=CAInfoModel)
async def config(api_settings=Depends(depends_settings)):
    """
    The certificate authority this api signs with: its common name, the location of its files
    and the validity of the certificates it issues
    """
    return CAInfoModel(
        common_name=api_settings.common_name,
        location=api_settings.location,
        days=api_settings.days,
    )


@app.get("/authority", response_class=FileResponse)
def get_authority_cert(api_settings=Depends(depends_settings)):
    """
    The authority certificate in a pem file, load it into any client that needs to trust it
    """
    cert_tool = authority_tool(api_settings)
    if cert_tool.cert_file.exists() is False:
        log.error(f"authority cert not found: {cert_tool.cert_file}")
        raise _authority_not_found(api_settings)
    return FileResponse(
        cert_tool.cert_file,
        media_type="application/x-pem-file",
        filename=cert_tool.cert_file.name,
    )


@app.get("/authority/info", response_model=AuthorityInfoModel)
def get_authority_info(api_settings=Depends(depends_settings)):
    cert_tool = authority_tool(api_settings)
    if cert_tool.cert_file.exists() is False:
        raise _authority_not_found(api_settings)
    try:
        info = cert_info(load_certificate(cert_tool.cert_file))
    except CertToolError as e:
        raise _http_error(e) from e
    return AuthorityInfoModel(
        authority_subject=info["subject"],
        authority_issuer=info["issuer"],
        authority_not_valid_before=str(info["not_before"]),
        authority_not_valid_after=str(info["not_after"]),
        authority_serial_number=str(info["serial"]),
        authority_fingerprint=info["fingerprint"],
        authority_path_length=info.get("path_length"),
    )


@app.post("/sign_csr")
def post_sign_csr(csr: SignRequestModel, api_settings=Depends(depends_settings)):
    """
    Sign a PEM certificate signing request with the authority of this api and return the
    certificate as PEM. The subject and subject alternative names come from the request.
    """
    cert_tool = authority_tool(api_settings)
    if cert_tool.cert_file.exists() is False or cert_tool.private_key_file.exists() is False:
        raise _authority_not_found(api_settings)

    config = CertConfig(
        location=api_settings.location,
        build=BuildOptions(days=csr.days if csr.days is not None else api_settings.days),
    )
    try:
        authority_cert = load_certificate(cert_tool.cert_file)
        authority_key = load_private_key(cert_tool.private_key_file, api_settings.key_password)
        request = parse_certificate_request(bytes(csr.csr, encoding="utf-8"), "sign_csr")
        # every request is its own run, with its own not valid before time
        issued = SigningHierarchyResolver(
            config, now=datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)
        ).issue(False, authority_certificate=authority_cert, authority_key=authority_key, request=request)
    except CertToolError as e:
        log.error(f"error creating the cert: {e}")
        raise _http_error(e) from e
    return Response(content=certificate_pem(issued.certificate), media_type="application/x-pem-file")


@app.post("/verify", response_model=VerifyResultModel)
def post_verify(body: VerifyRequestModel, api_settings=Depends(depends_settings)):
    """Verify a certificate chain up to the authority of this api, optionally for host names"""
    cert_tool = authority_tool(api_settings)
    if cert_tool.cert_file.exists() is False:
        raise _authority_not_found(api_settings)
    try:
        root_cert = load_certificate(cert_tool.cert_file)
        certificate = parse_certificate(bytes(body.certificate, encoding="utf-8"), "certificate")
        intermediate = None
        if body.intermediate:
            intermediate = parse_certificate(bytes(body.intermediate, encoding="utf-8"), "intermediate")
    except CertToolError as e:
        raise _http_error(e) from e

    try:
        verify_certificate(certificate, root=root_cert, intermediate=intermediate, hosts=body.hosts)
    except VerificationError as e:
        return VerifyResultModel(verified=False, detail=str(e))
    return VerifyResultModel(verified=True, detail="Certificate verified successfully")


@app.get("/health")
def health():
    return "Healthy: OK"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse the programme arguments
    :return: arguments
    """
    parser = argparse.ArgumentParser(description="certificate authority api", prog=__app__)
    parser.add_argument("-l", "--location", dest="location", type=pathlib.Path,
                        help=f"location of the authority certs and keys, defaults to {settings.default_location}")
    parser.add_argument("-cn", "--common-name", dest="common_name", type=str,
                        help="common name of the certificate authority, defaults to: root cert")
    parser.add_argument("--days", type=int, help="days issued certificates are valid for (default 90)")
    parser.add_argument("-pwd", "--password", type=str, help="authority private key password")
    parser.add_argument("-pp", "--port", dest="port", type=int,
                        help="port to run this web app on, defaults to port 80, the default port 80 will not work "
                             "on ubuntu without setting additional permissions on python executable")
    parser.add_argument("--ini", type=pathlib.Path, default=settings.default_ini_file,
                        help=f"ini file with default settings, defaults to: {settings.default_ini_file}")
    parser.add_argument("-ll", "--log-level", choices=["debug", "info"], type=str,
                        help="log detail, debug all, info less (default is info)")
    parser.add_argument("-v", "--version", help="get version information then exit", action="store_true")
    args = parser.parse_args(argv)
    log.debug(str(args))
    return args


def server(host: str = "0.0.0.0", port: int = 80):
    log.info(f"Running server: {host}:{port}")
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="debug",
    )


def main():
    global _settings
    args = parse_args()
    configure_logging(args.log_level)

    if args.version:
        log.info(f"Application: {__app__} - Version: {__version__}")
        sys.exit(0)

    ini = settings.ini_defaults(args.ini)
    try:
        _settings = ApiSettingsModel(
            common_name=args.common_name or ini.get("common_name", "root cert"),
            location=args.location or ini.get("location", settings.default_location),
            days=args.days or ini.get("days", 90),
            key_password=args.password,
        )
        port = int(args.port or ini.get("port", 80))
    except ValueError as e:
        log.critical(f"Invalid settings: {e}")
        sys.exit(1)

    log.info(f"Authority: {_settings.common_name} - location: {_settings.location.absolute()}")
    server(port=port, host="0.0.0.0")


if __name__ == "__main__":
    main()
