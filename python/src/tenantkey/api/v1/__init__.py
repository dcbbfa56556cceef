"""
API v1 Routes
"""

from fastapi import APIRouter

from . import auth, team, tenants
from .admin import tenant_management

router = APIRouter()

# Authentication (passkeys, sessions)
router.include_router(auth.router)

# Tenancy
router.include_router(tenants.router)
router.include_router(team.router)

# Admin endpoints
router.include_router(tenant_management.router)
