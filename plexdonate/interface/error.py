"""Interface layer errors and their HTTP mapping."""

from fastapi import status

from plexdonate.application.error import (
    EventRejectedError,
    LockTimeoutError,
    StoreError,
)

# Webhook failures a provider should see as non-2xx
WEBHOOK_ERROR_STATUS: dict[type[Exception], int] = {
    EventRejectedError: status.HTTP_400_BAD_REQUEST,
    LockTimeoutError: status.HTTP_503_SERVICE_UNAVAILABLE,
    StoreError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

def webhook_error_status(error: Exception) -> int:
    for error_type, code in WEBHOOK_ERROR_STATUS.items():
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR
