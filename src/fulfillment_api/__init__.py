"""HTTP surface for checkout fulfillment (Stripe webhook and mail relay)."""

__version__ = "0.1.0"
