"""
main.py

Entry point for the Faith Responders relief coordination API.

Wires the in-memory infrastructure into the FastAPI app, configures logging
and starts uvicorn.

Usage
-----
    # Option 1 — run directly
    python main.py

    # Option 2 — run via uvicorn CLI (recommended for development)
    uvicorn main:app --reload --port 8000

Settings come from RELIEF_* environment variables or a .env file
(see config.py), e.g.

    RELIEF_BOOTSTRAP_ADMIN_ID=admin-1 RELIEF_LOG_LEVEL=DEBUG python main.py

Once running, open your browser at:
    http://localhost:8000/docs      ← Swagger UI
    http://localhost:8000/redoc     ← ReDoc
    http://localhost:8000/health    ← liveness check

Quick-start walkthrough (use Swagger UI or curl)
-------------------------------------------------
1.  POST  /api/v1/users/register              — register; Authorization: Bearer <your-id>
2.  POST  /api/v1/users/{id}/role-approval    — as the bootstrap admin, approve the roles
3.  POST  /api/v1/groups                      — create a disaster-response group
4.  POST  /api/v1/centers                     — add a relief center to the group
5.  POST  /api/v1/assessments                 — record a damage assessment (assessor)
6.  POST  /api/v1/workgroups                  — form a crew for the assessment
7.  POST  /api/v1/workgroups/{id}/status      — report progress with notes and photos
8.  POST  /api/v1/escalations                 — escalate; the workgroup flips to needsEscalation
9.  POST  /api/v1/escalations/{id}/resolve    — resolve it

Authentication note
-------------------
The Bearer token is taken as the caller's principal id with no signature
check.  Put a real identity-provider token verifier in front of
get_current_user_id before going to production.
"""

import logging

import uvicorn

from api import app, get_uow
from config import get_settings
from infrastructure import InMemoryUnitOfWork

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


# ---------------------------------------------------------------------------
# Wire the concrete Unit of Work into the FastAPI dependency system.
# To swap databases, replace InMemoryUnitOfWork with a document-store implementation.
# ---------------------------------------------------------------------------

app.dependency_overrides[get_uow] = lambda: InMemoryUnitOfWork()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=True,          # auto-reload on file changes during development
        log_level=settings.log_level.lower(),
    )
