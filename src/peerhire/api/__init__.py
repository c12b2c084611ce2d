"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Role gating is applied at the include_router level using
FastAPI's dependencies parameter. This protects all routes in each
router without modifying individual handlers. Health and auth routers
are open; the account routes authenticate per handler because they
need the identity as an argument.
"""

from fastapi import APIRouter, Depends

from peerhire.api.auth import router as auth_router
from peerhire.api.gated import client_router, freelancer_router, member_router
from peerhire.api.health import router as health_router
from peerhire.api.users import router as users_router
from peerhire.auth.dependencies import require_any, require_client, require_freelancer

api_router = APIRouter()

# Open routes: no auth required
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])

# Authenticated routes: any role
api_router.include_router(users_router, tags=["users"])

# Role-gated routes
api_router.include_router(client_router, tags=["client"], dependencies=[Depends(require_client)])
api_router.include_router(
    freelancer_router, tags=["freelancer"], dependencies=[Depends(require_freelancer)]
)
api_router.include_router(member_router, tags=["member"], dependencies=[Depends(require_any)])
