"""
Data Room Sharing Module for the fund back-office platform.

This module gates external (non-employee) access to confidential fund
documents inside a data room:
- Time-limited shared links with usage caps
- Recipient email and password gating
- Mandatory NDA acceptance with verifiable signatures
- Short-lived, single-use access grants with watermark tracking codes
- Append-only access and activity logs
"""

__version__ = '1.0.0'
