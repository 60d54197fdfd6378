# onboarding/services/exceptions.py

class ServiceException(Exception):
    """Base exception for all service layer errors."""
    code: str = "service_error"

    def __init__(self, message: str, code: str = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(self.message)

class ValidationError(ServiceException):
    """Raised when handshake fields are missing or malformed (caller-fixable)."""
    code = "bad_request"

class UnauthorizedError(ServiceException):
    """Raised on a bad token, bad HMAC signature or fingerprint mismatch."""
    code = "unauthorized"

class StaleRequestError(UnauthorizedError):
    """Raised when the handshake timestamp falls outside the staleness window."""
    code = "stale_request"

class NotFoundError(ServiceException):
    """Raised when a tenant code or tenant schema is absent but required."""
    code = "not_found"

class InternalError(ServiceException):
    """Raised for unexpected or provider-side failures. The message is safe to show."""
    code = "internal_error"

class ConfigurationError(InternalError):
    """Raised if a required system configuration (e.g. provider credentials) is missing."""
    code = "configuration_error"

class ProvisioningError(InternalError):
    """Raised when a DDL statement fails for a reason other than 'already exists'."""
    code = "provisioning_error"

class MigrationError(InternalError):
    """Raised when adding or removing tables during a schema migration fails."""
    code = "migration_error"

class TenantConnectionError(InternalError):
    """Raised when a tenant connection pool cannot be initialized."""
    code = "tenant_connection_error"
