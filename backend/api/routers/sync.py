from fastapi import APIRouter, HTTPException
from fastapi.responses import PlainTextResponse
from typing import Dict, Any, Optional

from models.base import DifferenceType, MigrationScript, ScriptOptions, SyncDirection, WrapOption
from services.comparison_engine import default_script_options
from services.registry import spec_for
from .comparison import engine, get_stored_result

router = APIRouter()


def _script_options(
    direction: Optional[SyncDirection],
    wrap: Optional[WrapOption],
    include_drops: bool,
    auto_apply_breaking: bool
) -> ScriptOptions:
    defaults = default_script_options()
    return ScriptOptions(
        direction=direction or defaults.direction,
        wrap_option=wrap or defaults.wrap_option,
        include_drops=include_drops,
        auto_apply_breaking=auto_apply_breaking,
    )


def _generate(comparison_id: str, options: ScriptOptions) -> MigrationScript:
    result = get_stored_result(comparison_id)

    if not result.succeeded:
        raise HTTPException(status_code=409, detail=f"Comparison {comparison_id} did not complete successfully")
    if not result.differences:
        raise HTTPException(status_code=400, detail="No differences found to sync")

    return engine.generate_script(result, options)


@router.post("/{comparison_id}/generate")
async def generate_sync_script(
    comparison_id: str,
    direction: Optional[SyncDirection] = None,
    wrap: Optional[WrapOption] = None,
    include_drops: bool = True,
    auto_apply_breaking: bool = False
) -> MigrationScript:
    """Generate migration script from comparison results"""
    options = _script_options(direction, wrap, include_drops, auto_apply_breaking)
    return _generate(comparison_id, options)


@router.get("/{comparison_id}/script.sql", response_class=PlainTextResponse)
async def download_sync_script(
    comparison_id: str,
    direction: Optional[SyncDirection] = None,
    wrap: Optional[WrapOption] = None,
    include_drops: bool = True,
    auto_apply_breaking: bool = False
) -> PlainTextResponse:
    """Migration script as a .sql file"""
    options = _script_options(direction, wrap, include_drops, auto_apply_breaking)
    script = _generate(comparison_id, options)
    return PlainTextResponse(
        script.script,
        headers={"Content-Disposition": f'attachment; filename="migration_{comparison_id}.sql"'},
    )


@router.get("/{comparison_id}/preview")
async def preview_sync_changes(comparison_id: str) -> Dict[str, Any]:
    """Preview what changes will be made by the default script"""
    result = get_stored_result(comparison_id)

    # Group changes by type and severity
    preview = {
        "total_changes": len(result.differences),
        "by_severity": dict(result.summary.by_severity),
        "by_operation": {
            "create": [],
            "modify": [],
            "drop": []
        },
        "warnings": [],
        "data_loss_risk": False,
    }

    for diff in result.differences:
        item = {
            "object": f"{diff.object_type.value} {diff.qualified_name}",
            "severity": diff.severity.value,
            "description": diff.description,
        }
        if diff.difference_type == DifferenceType.MISSING:
            preview["by_operation"]["create"].append(item)
        elif diff.difference_type == DifferenceType.EXTRA:
            holds_data = spec_for(diff.object_type).holds_data
            item["warning"] = "Data loss risk!" if holds_data else None
            preview["by_operation"]["drop"].append(item)
            if holds_data:
                preview["data_loss_risk"] = True
        else:
            preview["by_operation"]["modify"].append(item)

        if diff.is_breaking:
            preview["warnings"].append(f"{diff.description}: {diff.severity_reason}")

    if result.migration_script is not None:
        preview["warnings"].extend(result.migration_script.warnings)
        preview["skipped_objects"] = result.migration_script.skipped_objects

    return preview
