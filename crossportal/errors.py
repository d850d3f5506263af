"""Exceptions raised by the crossportal package."""


class CrossPortalError(Exception):
    """Base class for all crossportal errors."""


class ConfigurationError(CrossPortalError):
    """An environment value could not be interpreted."""


class ExtractionError(CrossPortalError):
    """The listing page could not be loaded (browser launch or navigation failed)."""

    def __init__(self, url: str, message: str):
        super().__init__(f"{message}: {url}")
        self.url = url
