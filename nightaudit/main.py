# nightaudit/main.py
from fastapi import FastAPI, Depends, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError, ResponseValidationError
from fastapi.exception_handlers import http_exception_handler
from sqlalchemy import text
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from starlette.requests import Request
import os

from nightaudit.database import Base, engine, DB_SOURCE, DB_INFO
from nightaudit.routers import daily_close
from nightaudit import models
from nightaudit.auth import get_db
from nightaudit.errors import DailyCloseError
from nightaudit.migrations import run_auto_migrations

ERROR_STATUS = {
    "validation": 400,
    "not_found": 404,
    "conflict": 409,
    "transient": 503,
}

# -----------------------------------------
# Create app instance
# -----------------------------------------
app = FastAPI(title="Night Audit")

# -----------------------------------------
# Global Error Handling (Keep JSON Responses)
# -----------------------------------------
@app.exception_handler(DailyCloseError)
async def daily_close_error_handler(request: Request, exc: DailyCloseError):
    status_code = ERROR_STATUS.get(exc.kind, 500)
    if status_code >= 500:
        print(f"[DAILY_CLOSE] {type(exc).__name__}: {exc.message[:240]}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())

@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    msg = first.get("msg", "Invalid request")
    return JSONResponse(status_code=400, content={"detail": f"{loc}: {msg}" if loc else msg, "kind": "validation"})

@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError):
    print(f"[DB] SQLAlchemy error: {str(exc)[:240]}")
    return JSONResponse(status_code=503, content={"detail": "Database connection unavailable", "kind": "transient"})

@app.exception_handler(ResponseValidationError)
async def response_validation_error_handler(request: Request, exc: ResponseValidationError):
    print(f"[API] Response validation error: {str(exc)[:240]}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    if isinstance(exc, HTTPException):
        return await http_exception_handler(request, exc)

    print(f"[UNHANDLED] {type(exc).__name__}: {str(exc)[:240]}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})

# -----------------------------------------
# CORS Settings
# -----------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

@app.get("/health")
def health(db: Session = Depends(get_db)):
    base = {
        "db_source": DB_SOURCE,
        "db_driver": (DB_INFO or {}).get("driver"),
        "has_database_url": bool(os.getenv("DATABASE_URL")),
        "club_id_configured": bool(str(os.getenv("CLUB_ID", "")).strip()),
    }
    try:
        db.execute(text("select 1"))
        return {"ok": True, "db": "ok", **base}
    except SQLAlchemyError as e:
        print(f"[HEALTH] Database error: {str(e)[:200]}")
        return {"ok": False, "db": "error", **base}

# -----------------------------------------
# Database initialization
# -----------------------------------------
try:
    Base.metadata.create_all(bind=engine)
    run_auto_migrations(engine)
    print("[DB] Database connected successfully")
except Exception as e:
    print(f"[DB] Warning: Could not initialise schema: {str(e)[:100]}")

# -----------------------------------------
# Routers
# -----------------------------------------
app.include_router(daily_close.router)
