class WproError(Exception):
    pass


class ConfigurationError(WproError):
    """Missing or malformed IFR / intervention entries for a
    configured country.
    """


class AlignmentError(WproError):
    """Country series can't be aligned (no cases, or deaths never
    reach the threshold).
    """


class SchemaError(WproError):
    """Assembled arrays don't fit the shape the Stan program expects."""


class SolverError(WproError):
    """Stan failed to build or sample."""
