"""Client-side pricing, cart consistency and caching for the storefront"""

__version__ = "1.0.0"
