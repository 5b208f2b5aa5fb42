"""JSON export of everything a user owns."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from .crm_models import Activity, Client, Deal, Lead, User, UserSettings

logger = logging.getLogger(__name__)


def export_filename(exported_at: datetime) -> str:
    return f"crm-export-{exported_at.date().isoformat()}.json"


def build_export(
    user: User,
    settings: Optional[UserSettings],
    leads: Sequence[Lead],
    clients: Sequence[Client],
    deals: Sequence[Deal],
    activities: Sequence[Activity],
    exported_at: datetime,
) -> Dict[str, Any]:
    """Assemble the export document; all values are JSON-compatible."""
    return {
        "export_date": exported_at.isoformat(),
        "user": {
            "id": user.id,
            "email": user.email,
            "display_name": user.display_name,
        },
        "settings": settings.to_document() if settings is not None else None,
        "data": {
            "leads": [lead.to_document() for lead in leads],
            "clients": [client.to_document() for client in clients],
            "deals": [deal.to_document() for deal in deals],
            "activities": [activity.to_document() for activity in activities],
        },
        "statistics": {
            "total_leads": len(leads),
            "total_clients": len(clients),
            "total_deals": len(deals),
            "total_activities": len(activities),
            "total_deal_value": float(sum(deal.value for deal in deals)),
        },
    }


def dumps_export(document: Dict[str, Any]) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False)


def write_export(document: Dict[str, Any], directory: Path, exported_at: datetime) -> Path:
    """Write the export under ``directory`` using the dated default file name."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / export_filename(exported_at)
    path.write_text(dumps_export(document), encoding="utf-8")
    logger.info("Wrote export to %s", path)
    return path
