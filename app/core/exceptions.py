"""
ODDSMITH - Exceptions
Error types surfaced by the backtesting services
"""


class OddsmithError(Exception):
    """Base class for all application errors"""


class PredictionSourceError(OddsmithError):
    """Raised when settled predictions cannot be loaded from the prediction store"""

    def __init__(self, message: str, source: str = "unknown"):
        super().__init__(message)
        self.source = source


class OptimizationError(OddsmithError):
    """Raised when a parameter sweep cannot complete"""
