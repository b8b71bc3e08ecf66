from __future__ import annotations


GENERIC_ANALYSIS_MESSAGE = "Failed to analyze medication. Please try again."


class MedPriceError(Exception):
    pass


class ValidationError(MedPriceError):
    """Raised before any oracle call when the request carries nothing to analyze."""


class OracleCallError(MedPriceError):
    """Transport or HTTP failure talking to the oracle."""


class MalformedResponseError(MedPriceError):
    """The oracle replied, but no price record could be read out of it."""


class PersistenceError(MedPriceError):
    pass


class AnalysisInProgressError(MedPriceError):
    pass


class AnalysisFailedError(MedPriceError):
    def __init__(self, message: str = GENERIC_ANALYSIS_MESSAGE):
        super().__init__(message)


class CheckoutStateError(MedPriceError):
    pass
