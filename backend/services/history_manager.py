import json
from typing import List, Dict, Any, Optional
from datetime import datetime
from pathlib import Path
import logging

from models.base import SchemaComparisonResult
from core.config import settings

logger = logging.getLogger(__name__)


class HistoryManager:
    """Manages comparison history in JSON file"""

    def __init__(self, history_file: Optional[str] = None, limit: Optional[int] = None):
        self.history_file = Path(history_file or settings.HISTORY_FILE)
        self.limit = limit or settings.HISTORY_LIMIT
        self.history_file.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_file_exists()

    def _ensure_file_exists(self):
        """Create history file if it doesn't exist"""
        if not self.history_file.exists():
            self._save_history([])

    def _load_history(self) -> List[Dict[str, Any]]:
        """Load history from JSON file"""
        try:
            with open(self.history_file, 'r') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load history: {e}")
            return []

    def _save_history(self, history: List[Dict[str, Any]]):
        """Save history to JSON file"""
        try:
            with open(self.history_file, 'w') as f:
                json.dump(history, f, indent=2, default=str)
        except OSError as e:
            logger.error(f"Failed to save history: {e}")

    def add_comparison(self, result: SchemaComparisonResult):
        """Add a finished comparison to history"""
        history = self._load_history()
        summary = result.summary

        entry = {
            "id": result.id,
            "timestamp": result.compared_at.isoformat(),
            "recorded_at": datetime.now().isoformat(),
            "source": {
                "instance": result.source_instance,
                "schema": result.source_schema,
            },
            "destination": {
                "instance": result.destination_instance,
                "schema": result.destination_schema,
            },
            "label": result.comparison_label,
            "status": result.status.value,
            "status_label": summary.status_label if result.succeeded else "Failed",
            "error_message": result.error_message,
            "performed_by": result.performed_by,
            "duration_millis": result.duration_millis,
            "difference_count": summary.total_differences,
            "summary": {
                "missing": summary.missing,
                "extra": summary.extra,
                "modified": summary.modified,
                "by_severity": dict(summary.by_severity),
            },
        }

        # Add to beginning of list (most recent first)
        history.insert(0, entry)
        history = history[:self.limit]

        self._save_history(history)
        logger.info(f"Added comparison {result.id} to history")

    def get_recent(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Get recent comparisons"""
        history = self._load_history()
        return history[:limit]

    def get_by_id(self, comparison_id: str) -> Optional[Dict[str, Any]]:
        """Get a specific comparison by ID"""
        history = self._load_history()
        for entry in history:
            if entry["id"] == comparison_id:
                return entry
        return None

    def clear_history(self):
        """Clear all history"""
        self._save_history([])
        logger.info("Cleared comparison history")
