"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    TIMEOUT = 60003

    # Gateway taxonomy
    CONFIGURATION_ERROR = 60010
    GATEWAY_AUTH_ERROR = 60011
    HANDSHAKE_ERROR = 60012
    PAYMENT_CREATE_ERROR = 60013
    PAYMENT_EXECUTE_ERROR = 60014
    VERIFICATION_ERROR = 60015
    AMOUNT_MISMATCH = 60016


# Provider -> internal status mapping
PROVIDER_STATUS_TO_INTERNAL = {
    "bkash": {
        # Per transactionStatus
        "Initiated": "created",
        "Completed": "settled",
        "Cancelled": "cancelled",
        "Failed": "failed",
        "Expired": "failed",
    },
    "nagad": {
        # Per verify status
        "Success": "settled",
        "Cancelled": "cancelled",
        "Aborted": "cancelled",
        "Failed": "failed",
        "InvalidRequest": "failed",
        "Fraud": "failed",
    },
}

# Successful bKash API statusCode
BKASH_SUCCESS_CODE = "0000"

# Redirect `status` values that mean the customer never completed payment
CALLBACK_CANCEL_STATUSES = frozenset({"cancel", "cancelled", "aborted"})
CALLBACK_FAILURE_STATUSES = frozenset({"failure", "failed"})
