class SheetAnalystError(Exception):
    pass


class ConfigurationError(SheetAnalystError):
    """Raised at construction time when a required credential is missing."""


class UpstreamError(SheetAnalystError):
    """The analysis model call failed or timed out."""


class MalformedChartSpec(SheetAnalystError):
    """Text after the chart sentinel could not be turned into a chart payload."""
