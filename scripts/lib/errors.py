"""
Custom error classes for the P3 Proposal Dashboard.
Every error carries a code so the API layer can turn it into a readable
response without inspecting messages.

Hierarchy:
    DashboardError
    ├── StoreError
    │   ├── StoreNotConfiguredError
    │   └── StoreReadError
    ├── DataError
    │   ├── ConfigError
    │   ├── InvalidPeriodError
    │   └── InvalidQueryError
    └── ComputationError
        ├── MetricsComputationError
        ├── ComputationTimeoutError
        └── ComputationCancelledError
"""


class DashboardError(Exception):
    """Base exception for all dashboard errors."""

    def __init__(self, message: str, code: str = "UNKNOWN", details: dict = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code}] {message}")


# --- Record store errors ---

class StoreError(DashboardError):
    """Base class for record store failures."""
    pass


class StoreNotConfiguredError(StoreError):
    """Supabase credentials are missing."""

    def __init__(self):
        super().__init__(
            "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set in .env",
            code="STORE_NOT_CONFIGURED",
        )


class StoreReadError(StoreError):
    """A read against the record store failed (treated as transient)."""

    def __init__(self, table: str, operation: str, cause: Exception = None):
        msg = f"{operation} on '{table}' failed"
        if cause:
            msg += f": {cause}"
        super().__init__(
            msg, code="STORE_READ_FAILED",
            details={"table": table, "operation": operation},
        )


# --- Data errors ---

class DataError(DashboardError):
    """Base class for bad input or configuration."""
    pass


class ConfigError(DataError):
    """Configuration file error."""

    def __init__(self, message: str, config_path: str = None):
        super().__init__(
            message, code="CONFIG_ERROR",
            details={"config_path": config_path},
        )


class InvalidPeriodError(DataError):
    """Unknown time period or malformed month."""

    def __init__(self, message: str, value: str = None):
        super().__init__(
            message, code="INVALID_PERIOD", details={"value": value},
        )


class InvalidQueryError(DataError):
    """Employee query is not a valid regular expression."""

    def __init__(self, query: str, cause: Exception = None):
        msg = f"Invalid employee query '{query}'"
        if cause:
            msg += f": {cause}"
        super().__init__(msg, code="INVALID_QUERY", details={"query": query})


# --- Computation errors ---

class ComputationError(DashboardError):
    """A metrics run could not complete."""
    pass


class MetricsComputationError(ComputationError):
    """Fatal failure of a single aggregation run."""

    def __init__(self, step: str, cause: Exception = None):
        msg = f"Metrics computation failed during '{step}'"
        if cause:
            msg += f": {cause}"
        super().__init__(
            msg, code="METRICS_COMPUTATION_FAILED", details={"step": step},
        )


class ComputationTimeoutError(ComputationError):
    """A metrics run exceeded the request timeout."""

    def __init__(self, timeout: float):
        super().__init__(
            f"Metrics computation timed out after {timeout:g}s",
            code="METRICS_TIMEOUT", details={"timeout": timeout},
        )


class ComputationCancelledError(ComputationError):
    """A metrics run was abandoned by its caller between steps."""

    def __init__(self, step: str):
        super().__init__(
            f"Metrics computation cancelled before '{step}'",
            code="METRICS_CANCELLED", details={"step": step},
        )
