"""Occurrence routes: list, materialize, read and act."""

from __future__ import annotations

import logging
from typing import Optional

from aiohttp import web

from ...core.exceptions import RecurpayValidationError
from ...domain.lifecycle import OccurrenceLifecycleManager
from ...domain.models import OccurrenceStatus
from ...domain.rule_service import RuleService
from ..auth import OwnerResolver, require_owner
from ..schemas import MaterializeRequest, OccurrenceActionRequest, parse_body, parse_date_param

logger = logging.getLogger(__name__)


def _parse_statuses(raw: Optional[str]) -> Optional[list[OccurrenceStatus]]:
    """Parse a comma separated ``status`` query value."""
    if not raw:
        return None
    statuses = []
    for part in raw.split(","):
        value = part.strip()
        if not value:
            continue
        try:
            statuses.append(OccurrenceStatus(value))
        except ValueError:
            raise RecurpayValidationError(f"Unknown status: {value!r}", field="status") from None
    return statuses or None


def register_occurrence_routes(
    app: web.Application,
    rule_service: RuleService,
    lifecycle: OccurrenceLifecycleManager,
    owner_resolver: OwnerResolver,
) -> None:
    """Register /api/occurrences routes.

    Args:
        app: aiohttp web application
        rule_service: Service used for listing and range materialization
        lifecycle: Manager applying occurrence actions
        owner_resolver: Callable returning the caller's owner id
    """

    async def list_occurrences(request: web.Request) -> web.Response:
        owner_id = require_owner(request, owner_resolver)
        pairs = await rule_service.list_occurrences(
            owner_id,
            date_from=parse_date_param(request, "from"),
            date_to=parse_date_param(request, "to"),
            statuses=_parse_statuses(request.query.get("status")),
        )
        items = []
        for occurrence, rule in pairs:
            item = occurrence.model_dump(mode="json")
            item["rule"] = rule.model_dump(mode="json") if rule is not None else None
            items.append(item)
        return web.json_response({"occurrences": items})

    async def materialize(request: web.Request) -> web.Response:
        owner_id = require_owner(request, owner_resolver)
        body = await parse_body(request, MaterializeRequest)
        result = await rule_service.materialize_range(owner_id, body.date_from, body.date_to)
        return web.json_response(result.to_dict())

    async def get_occurrence(request: web.Request) -> web.Response:
        owner_id = require_owner(request, owner_resolver)
        occurrence = await rule_service.get_occurrence(owner_id, request.match_info["occurrence_id"])
        return web.json_response({"occurrence": occurrence.model_dump(mode="json")})

    async def act(request: web.Request) -> web.Response:
        owner_id = require_owner(request, owner_resolver)
        body = await parse_body(request, OccurrenceActionRequest)
        result = await lifecycle.act(
            owner_id, request.match_info["occurrence_id"], body.action, body.to_input()
        )
        return web.json_response(result.to_dict())

    app.router.add_get("/api/occurrences", list_occurrences)
    app.router.add_post("/api/occurrences/materialize", materialize)
    app.router.add_get("/api/occurrences/{occurrence_id}", get_occurrence)
    app.router.add_post("/api/occurrences/{occurrence_id}/actions", act)
    logger.debug("Occurrence routes registered")
