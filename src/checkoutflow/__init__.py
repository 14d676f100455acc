"""checkoutflow - checkout and order-lifecycle orchestration for the storefront."""

__version__ = "0.1.0"
