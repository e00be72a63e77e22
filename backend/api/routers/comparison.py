from fastapi import APIRouter, HTTPException
from pydantic import ValidationError
from typing import Optional, Dict, Any, List
import asyncio
import logging

from models.base import (
    DifferenceType, ObjectDifference, ObjectType, SchemaComparisonResult, Severity
)
from models.filter import ComparisonFilter
from models.requests import DatabaseCompareRequest, FilterOptions, SnapshotCompareRequest
from models.snapshot import SchemaSnapshot
from services.comparison_engine import ComparisonEngine, difference_types, summarize_issues
from services.history_manager import HistoryManager

logger = logging.getLogger(__name__)

router = APIRouter()

# In-memory storage for results (history is persisted to a JSON file)
comparison_results: Dict[str, SchemaComparisonResult] = {}
history_manager = HistoryManager()
engine = ComparisonEngine()


def build_comparison_filter(options: FilterOptions) -> ComparisonFilter:
    try:
        return options.to_filter()
    except (KeyError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid filter: {e}")


def store_result(result: SchemaComparisonResult) -> SchemaComparisonResult:
    comparison_results[result.id] = result
    history_manager.add_comparison(result)
    return result


def get_stored_result(comparison_id: str) -> SchemaComparisonResult:
    if comparison_id not in comparison_results:
        raise HTTPException(status_code=404, detail="Comparison not found")
    return comparison_results[comparison_id]


@router.post("/compare")
async def compare_snapshots(request: SnapshotCompareRequest) -> SchemaComparisonResult:
    """Compare two inline snapshots"""
    try:
        source = SchemaSnapshot.from_dict(request.source)
        destination = SchemaSnapshot.from_dict(request.destination)
    except (ValueError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid snapshot: {e}")

    comparison_filter = build_comparison_filter(request.filter)
    logger.info(f"Snapshot comparison requested: {source.instance} -> {destination.instance}")

    result = await asyncio.to_thread(
        engine.compare_snapshots,
        source,
        destination,
        request.source_schema,
        request.destination_schema,
        comparison_filter,
        request.script_options,
        request.performed_by,
    )
    return store_result(result)


@router.post("/compare-databases")
async def compare_databases(request: DatabaseCompareRequest) -> SchemaComparisonResult:
    """Capture two live schemas and compare them"""
    comparison_filter = build_comparison_filter(request.filter)
    result = await engine.compare_databases(
        request.source_dsn,
        request.destination_dsn,
        source_schema=request.source_schema,
        destination_schema=request.destination_schema,
        comparison_filter=comparison_filter,
        script_options=request.script_options,
        performed_by=request.performed_by,
    )
    return store_result(result)


@router.get("/{comparison_id}/result")
async def get_comparison_result(comparison_id: str) -> SchemaComparisonResult:
    """Get comparison result"""
    return get_stored_result(comparison_id)


@router.get("/{comparison_id}/status")
async def get_comparison_status(comparison_id: str) -> Dict[str, Any]:
    """Get comparison status"""
    if comparison_id not in comparison_results:
        entry = history_manager.get_by_id(comparison_id)
        if entry:
            return {
                "status": entry["status"],
                "status_label": entry["status_label"],
                "result_available": False,
            }
        return {
            "status": "not_found",
            "result_available": False
        }

    result = comparison_results[comparison_id]
    return {
        "status": result.status.value,
        "status_label": result.summary.status_label if result.succeeded else "Failed",
        "result_available": True,
        "total_differences": result.summary.total_differences,
        "by_difference_type": difference_types(result),
        "breaking": result.summary.breaking_count,
        "duration_millis": result.duration_millis,
        "error_kind": result.error_kind,
        "error_message": result.error_message,
        "issues": summarize_issues(result),
    }


@router.get("/{comparison_id}/differences")
async def get_differences(
    comparison_id: str,
    severity: Optional[Severity] = None,
    object_type: Optional[ObjectType] = None,
    difference_type: Optional[DifferenceType] = None
) -> List[ObjectDifference]:
    """Differences of a comparison, optionally filtered"""
    result = get_stored_result(comparison_id)
    differences = result.differences
    if severity is not None:
        differences = result.get_differences_by_severity(severity)
    if object_type is not None:
        differences = [d for d in differences if d.object_type == object_type]
    if difference_type is not None:
        differences = [d for d in differences if d.difference_type == difference_type]
    return differences


@router.delete("/{comparison_id}")
async def delete_comparison(comparison_id: str) -> Dict[str, str]:
    """Drop a stored comparison result"""
    get_stored_result(comparison_id)
    del comparison_results[comparison_id]
    return {"status": "deleted", "comparison_id": comparison_id}


@router.get("/recent/list")
async def get_recent_comparisons(limit: int = 10) -> List[Dict[str, Any]]:
    """Get recent comparisons"""
    return history_manager.get_recent(limit)
