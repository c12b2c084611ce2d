"""Role-gated API routes.

Learn: Role gating is declared, not coded: each router is mounted with a
require_* dependency (see api/__init__.py), so handlers only run for
identities whose role is in the allowed set. The gate leaves the
identity on request.state.identity.

These routes are the minimal client-only, freelancer-only and
any-member surface;
job, bid and contract routers mount the same way.
"""

from fastapi import APIRouter, Request

client_router = APIRouter(prefix="/api/client")
freelancer_router = APIRouter(prefix="/api/freelancer")
member_router = APIRouter(prefix="/api/member")


def _whoami(request: Request) -> dict:
    identity = request.state.identity
    return {"id": str(identity.id), "role": identity.role}


@client_router.get("/ping")
async def client_ping(request: Request):
    return {"message": "Client accessible", **_whoami(request)}


@freelancer_router.get("/ping")
async def freelancer_ping(request: Request):
    return {"message": "Freelancer accessible", **_whoami(request)}


@member_router.get("/ping")
async def member_ping(request: Request):
    return {"message": "Member accessible", **_whoami(request)}
