from __future__ import annotations


class SniperError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(SniperError):
    """Startup-only: invalid settings or key material."""


class TransientNetworkError(SniperError):
    """An RPC or HTTP call failed; the current tick/event is dropped."""


class ParseError(SniperError):
    """A remote payload did not match the expected schema."""


class SwapExecutionFailure(SniperError):
    pass


class SwapBuildError(SwapExecutionFailure):
    """The aggregator could not produce a signable transaction."""


class SwapSubmitError(SwapExecutionFailure):
    """Broadcasting the signed transaction failed."""


class SwapFailedError(SwapExecutionFailure):
    """The transaction landed but failed on-chain."""


class SwapExpiredError(SwapFailedError):
    """The transaction never landed and its blockhash has expired, so it never will."""


class SwapConfirmTimeoutError(SwapExecutionFailure):
    """No confirmation inside the window. Look the signature up before retrying."""

    def __init__(self, signature: str, timeout: float):
        super().__init__(f"Transaction {signature} not confirmed after {timeout:.0f}s")
        self.signature = signature
        self.timeout = timeout
