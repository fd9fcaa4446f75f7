class VectorLoadError(Exception):
    """Base exception for all vectorload errors."""
    pass

class SchemaError(VectorLoadError):
    """Raised when a collection schema or field descriptor is malformed."""
    pass

class UnsupportedTypeError(VectorLoadError):
    """Raised when a batch value has a runtime shape that cannot be encoded."""
    pass

class ValidationError(VectorLoadError):
    """Raised when a batch is empty, inconsistent, or violates the schema."""
    pass

class InconsistentVectorDimension(ValidationError):
    """Raised when a vector row does not match the column dimension."""

    def __init__(self, field: str, expected: int, actual: int, row: int):
        super().__init__(
            f"vector field '{field}' row {row} has dimension {actual}, expected {expected}"
        )
        self.field = field
        self.expected = expected
        self.actual = actual
        self.row = row

class CountMismatchError(VectorLoadError):
    """Raised when the store acknowledges a different number of rows than were sent."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"insert count mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual

class DecodeError(VectorLoadError):
    """Raised when raw search hits cannot be decoded."""
    pass

class TimedOut(VectorLoadError):
    """Raised when waiting on a long-running store task exceeds its deadline."""
    pass

class OperationCancelled(VectorLoadError):
    """Raised when a caller cancels a long-running store task."""
    pass

class StoreConnectionError(VectorLoadError, ConnectionError):
    """Raised when the store or the network to it fails."""
    pass

class IndexConfigError(VectorLoadError):
    """Raised when an index configuration names an unknown type or bad parameter."""
    pass
