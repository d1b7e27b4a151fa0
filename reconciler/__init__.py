"""
                Venue Reconciliation Service

Resolves operator-supplied venue names against external place and menu
providers, extracts menu lines and photos, detects duplicate establishments
and persists everything idempotently under provider rate limits.

Author: Khalil_Bannouri
Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "Khalil_Bannouri"
