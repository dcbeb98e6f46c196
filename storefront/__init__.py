"""
Storefront order core.

Order placement with inventory reservation, gateway payment verification and
cancellation with stock restoration.
"""

__version__ = "1.0.0"
