"""GET /triggers — the installed trigger catalog."""

from __future__ import annotations

from fastapi import APIRouter

from promptwatch.api.dependencies import ServiceDep
from promptwatch.api.schemas import TriggerArgSchema, TriggerInfo

router = APIRouter(prefix="/triggers", tags=["triggers"])


@router.get("", response_model=list[TriggerInfo])
async def list_triggers(service: ServiceDep) -> list[TriggerInfo]:
    return [
        TriggerInfo(
            name=t.name,
            description=t.description,
            args=[TriggerArgSchema(name=a.name, description=a.description) for a in t.args],
            default_interval=t.default_interval,
            usage=t.usage(),
        )
        for t in service.list_triggers()
    ]
