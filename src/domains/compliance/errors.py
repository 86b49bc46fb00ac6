"""Compliance engine error taxonomy.

ConfigurationError and NotFoundError also derive from ValueError and
LookupError so callers that already map those builtins (for example an HTTP
layer returning 400/404) keep working unchanged.
"""


class ComplianceError(Exception):
    """Base class for all compliance engine errors."""


class ConfigurationError(ComplianceError, ValueError):
    """Region or tenant configuration could not be resolved into a valid config."""


class NotFoundError(ComplianceError, LookupError):
    """A referenced customer, schedule or tenant does not exist."""

    def __init__(self, entity_type: str, entity_id: str | None) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class ProviderError(ComplianceError):
    """A screening or notification collaborator failed."""


class PersistenceError(ComplianceError):
    """A data store read or write failed."""
