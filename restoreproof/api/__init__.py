"""REST clients for the backup server and the hypervisor control plane."""

from restoreproof.api.auth import AccessToken, TokenManager
from restoreproof.api.client import ResilientAPIClient
from restoreproof.api.errors import ApiError, ApiErrorKind
from restoreproof.api.retry import RetryPolicy

__all__ = [
    "AccessToken",
    "ApiError",
    "ApiErrorKind",
    "ResilientAPIClient",
    "RetryPolicy",
    "TokenManager",
]
