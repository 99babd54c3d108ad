"""
KOR Inventory Exception Hierarchy

All exceptions include code, message, and details for the audit trail
and for the API error handler.

Exception Hierarchy:
    KorBaseError
    ├── AlertError
    │   └── AlertConfigError
    └── InventoryError
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class KorBaseError(Exception):
    """
    Base exception for all KOR Inventory custom errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
    """

    default_code: str = "KOR_ERROR"
    status_code: int = 400

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# ALERT ERRORS
# =============================================================================

class AlertError(KorBaseError):
    """Base exception for inventory alert errors."""

    default_code = "ALERT_ERROR"


class AlertConfigError(AlertError):
    """Invalid alert configuration update."""

    default_code = "ALERT_CONFIG_INVALID"
    status_code = 422


# =============================================================================
# INVENTORY ERRORS
# =============================================================================

class InventoryError(KorBaseError):
    """Inventory lookup or update failed."""

    default_code = "INVENTORY_ERROR"
    status_code = 404
