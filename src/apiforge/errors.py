from __future__ import annotations


class ApiforgeError(Exception):
    """Base for every error raised by apiforge."""


class CodedError(ApiforgeError):
    """Validation-family error with a stable machine-readable code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return (self.code, self.message) == (other.code, other.message)

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.code, self.message))


class ValidationError(CodedError):
    """Handler shape or request binding is invalid."""


class EndpointValidationError(ValidationError):
    """A ValidationError annotated with the endpoint it was raised for."""

    def __init__(self, method: str, path: str, cause: ValidationError) -> None:
        super().__init__(cause.code, cause.message)
        self.method = method
        self.path = path

    def __str__(self) -> str:
        return f"endpoint {self.method} {self.path}: [{self.code}] {self.message}"


class RegistryError(CodedError):
    """Middleware registry declaration is invalid."""


class GeneratorError(CodedError):
    """Manifest cannot be rendered (naming violations, collisions)."""


class RegistrationError(ValueError):
    """Programmer error caught at declaration time (bad path, missing handler)."""


class DiscoveryError(ApiforgeError):
    """The discovery sandbox failed; `stage` names the step that failed."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(message)
        self.stage = stage


class GenerationError(ApiforgeError):
    """Writing generated output failed."""


class ConfigError(ApiforgeError):
    """Project configuration is missing or invalid."""
