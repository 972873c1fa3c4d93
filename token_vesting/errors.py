"""Error taxonomy for the vesting program.

Every failure is a typed rejection of one transition. Decoding problems are
``DecodeError`` subclasses, failed preconditions are ``ValidationError``
subclasses, and refusals from the host's collaborators are ``HostError``.
"""

from __future__ import annotations


class VestingError(Exception):
    """Base class for every error raised by the vesting program."""

    code = "VestingError"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def __str__(self) -> str:
        if self.message == self.code:
            return self.code
        return f"{self.code}: {self.message}"


class DecodeError(VestingError):
    code = "DecodeError"


class TooShort(DecodeError):
    code = "TooShort"


class InvalidBoolean(DecodeError):
    code = "InvalidBoolean"


class UnknownTag(DecodeError):
    code = "UnknownTag"


class ValidationError(VestingError):
    code = "ValidationError"


class InvalidArgument(ValidationError):
    code = "InvalidArgument"


class MissingRequiredSignature(ValidationError):
    code = "MissingRequiredSignature"


class InvalidAccountData(ValidationError):
    code = "InvalidAccountData"


class InsufficientFunds(ValidationError):
    code = "InsufficientFunds"


class InvalidInstructionData(ValidationError):
    code = "InvalidInstructionData"


class MissingAccount(ValidationError):
    code = "MissingAccount"


class HostError(VestingError):
    """Raised by a host collaborator (account creation, token transfer)."""

    code = "HostError"
