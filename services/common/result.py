"""
Result Pattern Implementation
Standard success/failure envelope returned by every public service operation
"""

from typing import TypeVar, Generic, Optional, Any, Dict
from dataclasses import dataclass

from services.common.errors import PromoPalError

T = TypeVar('T')


@dataclass
class Result(Generic[T]):
    """
    Either a successful result with data or a failure with an error message
    and a stable error code.

    Examples:
        result = Result.success(campaign)
        if result.is_success:
            print(result.data.name)

        result = Result.failure("Campaign not found", code="NOT_FOUND")
        if result.is_failure:
            print(result.error_code)
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, data: T, metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def failure(cls,
                error: str,
                code: Optional[str] = None,
                metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        return cls(success=False, error=error, error_code=code, metadata=metadata)

    @classmethod
    def from_error(cls, error: PromoPalError, metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        """Build a failure from a domain exception, carrying its code."""
        return cls.failure(str(error), code=error.code, metadata=metadata)

    @property
    def is_success(self) -> bool:
        return self.success

    @property
    def is_failure(self) -> bool:
        return not self.success

    def unwrap(self) -> T:
        """
        Get the data from a successful result.

        Raises:
            ValueError: If called on a failure result
        """
        if self.is_failure:
            raise ValueError(f"Cannot unwrap a failure result: {self.error}")
        return self.data

    def __bool__(self) -> bool:
        return self.is_success

    def __repr__(self) -> str:
        if self.is_success:
            return f"Result.success(data={self.data!r})"
        return f"Result.failure(error={self.error!r}, code={self.error_code!r})"
