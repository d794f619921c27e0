"""Errors raised by syno-iscsi."""


class ISCSIError(Exception):
    """
    User-facing error with a message that is printed as-is.

    Raised for invalid input, failed lookups and rejected business rules.
    Anything else reaching the command line is reported as an unknown error.
    """
