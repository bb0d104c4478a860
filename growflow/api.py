from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from growflow import __version__
from growflow.workflow.api_workflow import router as workflow_router

logger = logging.getLogger(__name__)

app = FastAPI(title="GrowFlow Workflow Engine", version=__version__)
app.include_router(workflow_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health():
    return {"status": "ok", "version": __version__}
