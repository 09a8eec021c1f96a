from .api import connect as connect
from .client import ApiClient as ApiClient
from .config import ApiConfig as ApiConfig
from .models import ApiError as ApiError
from .models import ApiResponse as ApiResponse
from .models import EventKind as EventKind
from .models import RequestDescriptor as RequestDescriptor

__all__ = [
    "connect",
    "ApiClient",
    "ApiConfig",
    "ApiError",
    "ApiResponse",
    "EventKind",
    "RequestDescriptor",
]
