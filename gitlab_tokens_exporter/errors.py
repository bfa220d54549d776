class ExporterError(Exception):
    """Base class for the exporter's errors."""


class ConfigError(ExporterError):
    """Raised when the environment does not hold a usable configuration."""


class GitlabApiError(ExporterError):
    """A GitLab API call failed: transport error, bad status or bad body."""

    def __init__(self, url, message, status=None):
        self.url = url
        self.status = status
        self.message = message
        super().__init__(str(self))

    def __str__(self):
        if self.status is not None:
            return f"GET {self.url} - {self.status} : {self.message}"
        return f"GET {self.url} : {self.message}"


class TokenDataError(ExporterError):
    """A single token record returned by GitLab cannot be used."""
