import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from stewards.config import settings
from stewards.database import get_db
from stewards.logging_config import setup_logging
from stewards.models import Inspector, WorkOrder
from stewards.routers import admin, webhook

setup_logging(settings.log_level)

app = FastAPI(
    title="Stewards API",
    description="WhatsApp inspection workflow for property inspectors",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(admin.router)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    inspectors_count = db.query(Inspector).count()
    work_orders_count = db.query(WorkOrder).count()
    return {
        "status": "ok",
        "inspectors": inspectors_count,
        "work_orders": work_orders_count,
    }
