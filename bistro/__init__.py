"""
                Bistro Ordering

Backend for a single-restaurant website: menu, cart pricing,
takeout/delivery ordering and a small admin dashboard API.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
