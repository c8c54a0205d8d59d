"""
tilewarp exceptions

Single-tile fetch/decode failures are absorbed by the orchestrator (blank placeholder);
parameter validation, cancellation and output encoding failures reach the caller.
"""


class TileWarpError(Exception):
    """Base exception for tilewarp"""

    pass


class ParameterValidationError(TileWarpError, ValueError):
    """Missing or invalid request option"""

    pass


class FetchError(TileWarpError):
    """Retrieving a source tile failed"""

    def __init__(self, message: str, url: str = ""):
        super().__init__(message)
        self.url = url


class FetchNetworkError(FetchError):
    """Bad response or transport failure"""

    pass


class FetchCancelledError(FetchError):
    """The fetch was cancelled through its task group"""

    pass


class FetchTimeoutError(FetchCancelledError):
    """The fetch did not settle within its timeout"""

    pass


class TileDecodeError(FetchError):
    """Payload is not a valid image/buffer"""

    pass


class OutputEncodingError(TileWarpError):
    """The output encoder could not encode the final tile"""

    pass
