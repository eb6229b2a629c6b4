"""
Campaign Service Clients

Clients for the delivery channels and the customer store.
"""

from .customer_client import CustomerClient
from .email_client import EmailClient
from .message_client import MessageClient

__all__ = [
    "CustomerClient",
    "EmailClient",
    "MessageClient",
]
