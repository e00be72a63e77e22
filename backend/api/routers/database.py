from fastapi import APIRouter, HTTPException
from typing import Dict, Any
import logging

from sqlalchemy.exc import SQLAlchemyError

from core.database import DatabaseConnection, redact_url
from models.requests import DatabaseTestRequest, SnapshotCaptureRequest
from services.snapshot_loader import SnapshotLoader

logger = logging.getLogger(__name__)

router = APIRouter()

loader = SnapshotLoader()


@router.post("/test")
async def test_connection(request: DatabaseTestRequest) -> Dict[str, Any]:
    """Test database connection and return connection info"""
    connection = DatabaseConnection(request.dsn)
    target = redact_url(request.dsn)
    try:
        info = await connection.test_connection()
        return {
            "success": True,
            "database": info.get("database"),
            "version": info.get("version", "Unknown"),
            "host": SnapshotLoader.describe_location(request.dsn),
            "message": f"Successfully connected to {info.get('database')}"
        }

    except (SQLAlchemyError, OSError) as e:
        error_msg = str(e)
        logger.error(f"Database connection test failed for {target}: {error_msg}")

        # Provide user-friendly error messages
        if "password authentication failed" in error_msg:
            detail = "Invalid username or password"
        elif "does not exist" in error_msg:
            detail = "Database does not exist"
        elif "refused" in error_msg or "timed out" in error_msg.lower():
            detail = f"Cannot connect to PostgreSQL server at {target}"
        else:
            detail = f"Connection failed: {error_msg}"

        raise HTTPException(status_code=400, detail=detail)

    finally:
        await connection.close()


@router.post("/snapshot")
async def capture_snapshot(request: SnapshotCaptureRequest) -> Dict[str, Any]:
    """Capture one schema and return it in the snapshot file format"""
    snapshot = await loader.capture(request.dsn, request.schema_name)
    return snapshot.to_dict()
