"""
Exception taxonomy for the MultiEnrich pipeline.

Only configuration problems are fatal. Resolution loss and empty results are
reported, and back-end failures are isolated per task by the dispatcher.
"""


class EnrichmentError(Exception):
    """Base class for all pipeline errors"""


class ConfigurationError(EnrichmentError, ValueError):
    """An option value makes the run meaningless"""


class InvalidThresholdError(ConfigurationError):
    """Effect-size threshold that cannot partition a ranked list into disjoint subsets"""

    def __init__(self, threshold):
        self.threshold = threshold
        super().__init__(
            f"Effect-size threshold must be > 0 to give disjoint up/down subsets, got {threshold!r}"
        )


class DegenerateUniverseError(ConfigurationError):
    """Internal universe barely overlaps a reference database universe"""

    def __init__(self, database: str, overlap_fraction: float, minimum: float, report=None):
        self.database = database
        self.report = report
        self.overlap_fraction = overlap_fraction
        self.minimum = minimum
        super().__init__(
            f"Universe overlap with '{database}' is {overlap_fraction:.2%} "
            f"(minimum {minimum:.2%}). Check the organism and identifier namespace."
        )


class InputFormatError(EnrichmentError, ValueError):
    """An input table lacks the columns the pipeline needs"""


class BackendError(EnrichmentError, RuntimeError):
    """A database back-end failed or returned malformed data"""
