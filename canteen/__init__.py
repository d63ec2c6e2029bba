"""
                Canteen Ordering Core

Backend core for campus canteen ordering: single-vendor session carts,
per-vendor menu catalogs persisted to a pluggable key-value store, and
QR payloads that route a student to a canteen's menu.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
