import logging

from fastapi import FastAPI
from backend.app.api.v1.router import router as v1_router
from backend.app.core.config import LOG_LEVEL

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(title="Wholesale Shipment Planning", version="0.1.0")
app.include_router(v1_router, prefix="/v1")
