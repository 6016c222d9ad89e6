"""Checkout fulfillment: turns paid Stripe checkout sessions into download emails."""

__version__ = "0.1.0"
