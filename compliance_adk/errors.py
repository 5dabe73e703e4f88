from __future__ import annotations


class ComplianceError(Exception):
    """Base class for failures scoped to a single orchestrator operation."""


class ValidationFailure(ComplianceError):
    """Input was rejected before any store or model call was attempted."""


class PreconditionFailure(ComplianceError):
    pass


class RemoteCallError(ComplianceError):
    """The model call failed: transport, SDK or safety-filter rejection."""

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{operation} call failed{detail}")


class ModelOutputError(ComplianceError):
    """The model answered, but its payload could not be decoded.

    ``kind`` is one of ``empty``, ``malformed_json`` or ``schema_mismatch``.
    """

    EMPTY = "empty"
    MALFORMED_JSON = "malformed_json"
    SCHEMA_MISMATCH = "schema_mismatch"

    def __init__(self, kind: str, detail: str = "") -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(f"model output {kind}" + (f": {detail}" if detail else ""))
