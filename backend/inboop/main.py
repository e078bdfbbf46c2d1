import logging
from typing import List

from dotenv import load_dotenv
from fastapi import FastAPI, Depends, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

# Load environment variables from .env file
load_dotenv()

from inboop.database import get_db, engine, Base
from inboop.config import get_settings, get_cors_origins
from inboop.routers import instagram, meta
import inboop.models  # noqa: F401 - register models on Base.metadata


logger = logging.getLogger(__name__)

API_TITLE = "Inboop API"
API_VERSION = "0.1.0"

settings_for_cors = get_settings()
cors_allow_origins: List[str] = get_cors_origins(settings_for_cors)

if cors_allow_origins:
    logger.info("Allowing CORS origins: %s", cors_allow_origins)


# Create tables
Base.metadata.create_all(bind=engine)

app = FastAPI(title=API_TITLE, version=API_VERSION)

# CORS configuration - allow frontend to communicate with backend
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api")
def api_info():
    """API information endpoint"""
    return {"message": API_TITLE, "version": API_VERSION}


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Check if API and database are working"""
    try:
        db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except SQLAlchemyError as e:
        logger.error(f"Health check database error: {type(e).__name__}")
        raise HTTPException(status_code=500, detail="Database error")


app.include_router(instagram.router)
app.include_router(meta.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
