"""Hubstock: storefront availability and fee aggregation for order-cycle marketplaces."""

__version__ = "1.0.0"
