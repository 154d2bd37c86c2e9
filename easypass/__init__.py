"""
EasyPass payments backend.

User registration, QR-token issuance and Paystack payment verification with
reference-based deduplication.
"""

__version__ = "1.0.0"
