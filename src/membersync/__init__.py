"""Whop membership sync service.

Keeps subscription state reported by Whop in step with Supabase user accounts.
"""

__version__ = "0.1.0"
