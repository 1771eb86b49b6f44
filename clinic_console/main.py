import logging
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clinic_console.config import get_settings
from clinic_console.core.logging import setup_logging
from clinic_console.database import create_tables
from clinic_console.routers import queues, medications, patients, prescriptions, health
from clinic_console.seed import create_demo_data

settings = get_settings()

setup_logging(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)

# Lifespan for startup events
@app.on_event("startup")
def on_startup():
    create_tables()
    if settings.seed_demo_data:
        create_demo_data()
    logger.info(f"{settings.app_name} started ({settings.environment})")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"],
    allow_headers=["*"],
)

app.include_router(queues.router, prefix="/api/v1")
app.include_router(medications.router, prefix="/api/v1")
app.include_router(patients.router, prefix="/api/v1")
app.include_router(prescriptions.router, prefix="/api/v1")
app.include_router(health.router, prefix="/api/v1")


if __name__ == "__main__":
    uvicorn.run("clinic_console.main:app", host="0.0.0.0", port=8000, reload=settings.is_development)
