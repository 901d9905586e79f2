"""Errors a SpectrumSource may raise. All of them are scoped to one antenna."""


class FetchError(Exception):
    """Base class for a failed spectrum fetch."""


class AntennaNotFound(FetchError):
    """The antenna name did not match anything the source knows about."""


class SourceUnavailable(FetchError):
    """Transport or network failure while talking to the source."""


class DecodeError(FetchError):
    """The source answered but the payload is not a usable spectrum."""


class FetchTimeout(FetchError):
    pass
