from __future__ import annotations

import logging
import os

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

try:
    from .errors import FamilyTreeError
    from .middleware import AuthMiddleware
    from .routes.admin import router as admin_router
    from .routes.auth import router as auth_router
    from .routes.documentation import router as documentation_router
    from .routes.events import router as events_router
    from .routes.members import router as members_router
    from .routes.tree import router as tree_router
except ImportError:  # pragma: no cover
    # Support running with CWD=familytree (e.g., `python -m uvicorn main:app`).
    from errors import FamilyTreeError
    from middleware import AuthMiddleware
    from routes.admin import router as admin_router
    from routes.auth import router as auth_router
    from routes.documentation import router as documentation_router
    from routes.events import router as events_router
    from routes.members import router as members_router
    from routes.tree import router as tree_router

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger(__name__)

app = FastAPI(title="Family Tree API", version="0.1.0")

app.add_middleware(AuthMiddleware)

app.include_router(auth_router)
app.include_router(admin_router)
app.include_router(members_router)
app.include_router(tree_router)
app.include_router(events_router)
app.include_router(documentation_router)


@app.exception_handler(FamilyTreeError)
async def family_tree_error_handler(request: Request, exc: FamilyTreeError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse({"detail": exc.message}, status_code=exc.status_code)


@app.get("/health")
def health() -> dict[str, str]:
    return {"ok": "true"}
