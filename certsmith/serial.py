import secrets

SERIAL_NUMBER_LIMIT = 1 << 128


def generate_serial_number() -> int:
    """Random serial number below 2**128, never zero as x509 serial numbers must be positive"""
    return secrets.randbelow(SERIAL_NUMBER_LIMIT - 1) + 1
