from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from compliance_adk.config import settings
from compliance_adk.http import router as router_mod
from compliance_adk.orchestrator import Orchestrator

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("compliance_adk.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    orch = Orchestrator(settings=settings)
    orch.open()
    router_mod.set_orchestrator(orch)
    if settings.seed_defaults:
        listed = await orch.list_policies()
        if listed.success and not listed.data:
            resp = await orch.load_defaults()
            logger.info("Seeded %s default policies", resp.data)
    try:
        yield
    finally:
        router_mod.set_orchestrator(None)
        orch.close()


app = FastAPI(title="Compliance Auditor API", version="0.1.0", lifespan=lifespan)

# Enable CORS for local development and simple frontends
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router_mod.router)


@app.get("/health")
def health():
    return {"status": "ok", "storage_backend": settings.storage_backend}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api:app", host="0.0.0.0", port=8000, reload=False)
