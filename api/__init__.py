"""API module for the Midtrans Payment Backend."""

from .payment_api import create_app, PaymentAPI

__all__ = ['create_app', 'PaymentAPI']
