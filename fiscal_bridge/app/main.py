from fastapi import FastAPI

from fiscal_bridge.app.api.v1.router import router as v1_router
from fiscal_bridge.app.logging_setup import setup_logging

setup_logging()

app = FastAPI(title="Fiscal Bridge", version="0.1.0")
app.include_router(v1_router, prefix="/v1")
