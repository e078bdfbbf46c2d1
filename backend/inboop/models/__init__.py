from inboop.models.user import User
from inboop.models.business import Business, PLACEHOLDER_BUSINESS_NAME
from inboop.models.connection_attempt import ConnectionAttempt

__all__ = [
    "User",
    "Business",
    "PLACEHOLDER_BUSINESS_NAME",
    "ConnectionAttempt",
]
