class CertToolError(Exception):
    """Base class for every fatal certsmith error, mapped to exit status 1 by main"""


class InputValidationError(CertToolError):
    """A required file is missing or a required value is empty"""


class ParseError(CertToolError):
    """PEM data is absent, of the wrong type or does not decode"""


class KeyGenerationError(CertToolError):
    """The key pair could not be generated"""


class SigningError(CertToolError):
    """Issuing a certificate or a certificate signing request failed"""


class VerificationError(CertToolError):
    """Chain or hostname verification failed"""


class TrustError(CertToolError):
    """The certificate could not be added to the operating system trust store"""
