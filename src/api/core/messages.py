"""Centralized message codes and default messages for API responses."""

from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel


class MessageCode(str, Enum):
    """Centralized message codes for API responses."""

    # Success codes
    SUCCESS = "SUCCESS"
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    DELETED = "DELETED"

    # Authentication & Authorization
    AUTH_REQUIRED = "AUTH_REQUIRED"
    FORBIDDEN = "FORBIDDEN"
    INVALID_TOKEN = "INVALID_TOKEN"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"

    # User management
    USER_NOT_FOUND = "USER_NOT_FOUND"

    # Billing
    SUBSCRIPTION_NOT_FOUND = "SUBSCRIPTION_NOT_FOUND"
    NO_ACTIVE_SUBSCRIPTION = "NO_ACTIVE_SUBSCRIPTION"
    SUBSCRIPTION_NOT_MODIFIABLE = "SUBSCRIPTION_NOT_MODIFIABLE"
    SUBSCRIPTION_ALREADY_ACTIVE = "SUBSCRIPTION_ALREADY_ACTIVE"
    SUBSCRIPTION_CANCELED = "SUBSCRIPTION_CANCELED"
    SUBSCRIPTION_UPDATED = "SUBSCRIPTION_UPDATED"
    SUBSCRIPTION_CANCEL_SCHEDULED = "SUBSCRIPTION_CANCEL_SCHEDULED"
    SUBSCRIPTION_REACTIVATED = "SUBSCRIPTION_REACTIVATED"
    SUBSCRIPTION_SYNCED = "SUBSCRIPTION_SYNCED"
    UNKNOWN_PRICE = "UNKNOWN_PRICE"
    CUSTOMER_LINKAGE_UNRESOLVED = "CUSTOMER_LINKAGE_UNRESOLVED"
    CHECKOUT_NOT_COMPLETED = "CHECKOUT_NOT_COMPLETED"

    # Webhooks
    WEBHOOK_SIGNATURE_INVALID = "WEBHOOK_SIGNATURE_INVALID"
    WEBHOOK_PAYLOAD_INVALID = "WEBHOOK_PAYLOAD_INVALID"
    WEBHOOK_PROCESSING_FAILED = "WEBHOOK_PROCESSING_FAILED"
    WEBHOOK_EVENT_NOT_FOUND = "WEBHOOK_EVENT_NOT_FOUND"
    WEBHOOK_EVENT_ALREADY_PROCESSED = "WEBHOOK_EVENT_ALREADY_PROCESSED"
    WEBHOOK_EVENT_UNHANDLED = "WEBHOOK_EVENT_UNHANDLED"

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"

    # Service Errors
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"

    # Generic errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    BAD_REQUEST = "BAD_REQUEST"
    NOT_FOUND = "NOT_FOUND"


# Default messages for each message code
DEFAULT_MESSAGES = {
    # Success messages
    MessageCode.SUCCESS: "Operation completed successfully",
    MessageCode.CREATED: "Resource created successfully",
    MessageCode.UPDATED: "Resource updated successfully",
    MessageCode.DELETED: "Resource deleted successfully",
    # Authentication & Authorization
    MessageCode.AUTH_REQUIRED: "Authentication required",
    MessageCode.FORBIDDEN: "Access denied",
    MessageCode.INVALID_TOKEN: "Invalid authentication token",
    MessageCode.INSUFFICIENT_PERMISSIONS: "Insufficient permissions",
    # User management
    MessageCode.USER_NOT_FOUND: "User not found",
    # Billing
    MessageCode.SUBSCRIPTION_NOT_FOUND: "No subscription found for this user",
    MessageCode.NO_ACTIVE_SUBSCRIPTION: "No active subscription found. Please contact support",
    MessageCode.SUBSCRIPTION_NOT_MODIFIABLE: "Subscription cannot be modified in its current state",
    MessageCode.SUBSCRIPTION_ALREADY_ACTIVE: "Subscription is already active",
    MessageCode.SUBSCRIPTION_CANCELED: "Subscription has been canceled",
    MessageCode.SUBSCRIPTION_UPDATED: "Subscription updated successfully",
    MessageCode.SUBSCRIPTION_CANCEL_SCHEDULED: "Subscription will be canceled at the end of the billing period",
    MessageCode.SUBSCRIPTION_REACTIVATED: "Subscription reactivated successfully",
    MessageCode.SUBSCRIPTION_SYNCED: "Subscription synced with Stripe",
    MessageCode.UNKNOWN_PRICE: "Unknown price",
    MessageCode.CUSTOMER_LINKAGE_UNRESOLVED: "Subscription record not found and could not be created",
    MessageCode.CHECKOUT_NOT_COMPLETED: "Checkout session has not been paid",
    # Webhooks
    MessageCode.WEBHOOK_SIGNATURE_INVALID: "Webhook signature verification failed",
    MessageCode.WEBHOOK_PAYLOAD_INVALID: "Invalid webhook payload",
    MessageCode.WEBHOOK_PROCESSING_FAILED: "Webhook handler failed",
    MessageCode.WEBHOOK_EVENT_NOT_FOUND: "Webhook event not found",
    MessageCode.WEBHOOK_EVENT_ALREADY_PROCESSED: "Event already processed",
    MessageCode.WEBHOOK_EVENT_UNHANDLED: "Cannot reprocess unhandled event type",
    # Validation errors
    MessageCode.VALIDATION_ERROR: "Validation failed",
    MessageCode.INVALID_INPUT: "Invalid input provided",
    # Service errors
    MessageCode.EXTERNAL_SERVICE_ERROR: "External service error",
    # Generic errors
    MessageCode.INTERNAL_ERROR: "Internal server error",
    MessageCode.BAD_REQUEST: "Bad request",
    MessageCode.NOT_FOUND: "Not found",
}

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    """Base API response model with consistent structure and proper typing."""

    message_code: MessageCode
    message: str
    data: T | None = None

    @classmethod
    def success(
        cls,
        message_code: MessageCode = MessageCode.SUCCESS,
        message: str | None = None,
        data: T | None = None,
    ) -> "APIResponse[T]":
        """Create a success response."""
        return cls(
            message_code=message_code,
            message=message or DEFAULT_MESSAGES.get(message_code, "Success"),
            data=data,
        )


def get_default_message(message_code: MessageCode) -> str:
    """Get default message for a message code."""
    return DEFAULT_MESSAGES.get(message_code, "Operation completed")
