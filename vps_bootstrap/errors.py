"""Exception hierarchy shared by the resolver, probes, steps and executor."""


class BootstrapError(Exception):
    """Base exception for bootstrap errors."""

    pass


class ConfigError(BootstrapError):
    """Raised when the override source or an option value cannot be used."""

    pass


class ProbeError(BootstrapError):
    """Raised when inspecting system state fails for reasons other than absence."""

    pass


class StepError(BootstrapError):
    """Raised when a step's apply action fails."""

    pass


class ExecutionError(StepError):
    """Raised when command execution fails."""

    pass


class RegistryError(BootstrapError):
    """Raised when the step registry is declared inconsistently."""

    pass
