"""
BrokerDesk - API Backend

Start with:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
import logging

from config import client, CORS_ORIGINS
from services.errors import WorkflowError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("brokerdesk")

app = FastAPI(
    title="BrokerDesk",
    description="Loan / insurance submissions review and migration",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== ERRORS ====================

@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path}: {type(exc).__name__}: {exc.message} {exc.details}")
    payload = {
        "success": False,
        "message": exc.message,
        "error": type(exc).__name__,
        **exc.details,
    }
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(payload))


# ==================== ROUTES ====================

from routes import auth, verification, submissions

app.include_router(auth.router, prefix="/api")
app.include_router(verification.router, prefix="/api")
app.include_router(submissions.router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": "BrokerDesk API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


@app.get("/api/health")
async def health():
    from firebase_app import is_firebase_ready
    return {"status": "ok", "firebase": is_firebase_ready()}


# ==================== STARTUP / SHUTDOWN ====================

@app.on_event("startup")
async def startup():
    from firebase_app import init_firebase
    from scheduler_service import task_scheduler
    from services.repositories import ensure_indexes

    init_firebase()
    await ensure_indexes()
    logger.info("✅ MongoDB indexes created")

    task_scheduler.start()
    logger.info("🚀 BrokerDesk API started")


@app.on_event("shutdown")
async def shutdown():
    from scheduler_service import task_scheduler

    task_scheduler.stop()
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
