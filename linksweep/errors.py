class ConfigurationError(ValueError):
    """Invalid experiment parameters, raised before any simulation work starts."""


class EngineError(RuntimeError):
    """The link simulation engine could not build or run a scenario."""
