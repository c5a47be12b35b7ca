from typing import Dict


class GatewayError(Exception):
    """Base error. `kind` is the machine-checkable name sent back to callers."""

    kind = "GatewayError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class MalformedRequest(GatewayError):
    kind = "MalformedRequest"


class UnknownTarget(GatewayError):
    kind = "UnknownTarget"


class UnsupportedOperation(GatewayError):
    kind = "UnsupportedOperation"


class ConfigurationError(GatewayError):
    kind = "ConfigurationError"
