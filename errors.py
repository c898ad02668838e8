"""
SigKit Errors - Exception hierarchy shared by extraction, compilation and fetching
"""
from typing import Optional


class SigKitError(Exception):
    """Base class for every error raised by SigKit"""


class ExtractionError(SigKitError):
    """Player script did not contain a required transform function"""


class FunctionNameNotFound(ExtractionError):
    """None of the decipher name rules matched the player script"""

    def __init__(self, rules_tried):
        self.rules_tried = list(rules_tried)
        super().__init__(
            "Could not find decipher function name (tried: %s)" % ", ".join(self.rules_tried)
        )


class DecipherExtractionError(ExtractionError):
    """Decipher function body or its helper object could not be parsed"""


class TransformError(SigKitError):
    """A compiled transform failed while running"""


class ScriptExecutionError(TransformError):
    """JS engine raised or returned a non-string value"""


class TransformTimeout(TransformError):
    """Compiled transform exceeded its execution time limit"""


class FormatError(SigKitError):
    """Format record carries neither a url nor a cipher payload"""


class PlayerFetchError(SigKitError):
    """Player script could not be fetched"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CircuitOpenError(PlayerFetchError):
    """Circuit breaker is rejecting requests"""
