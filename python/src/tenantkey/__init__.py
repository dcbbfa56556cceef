"""
TenantKey: passkey authentication and tenant-scoped access control.
"""

__version__ = "0.1.0"
