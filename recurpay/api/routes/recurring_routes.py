"""Recurring rule routes: list, create, read, update, deactivate."""

from __future__ import annotations

import logging

from aiohttp import web

from ...domain.rule_service import RuleService
from ..auth import OwnerResolver, require_owner
from ..schemas import RuleCreateRequest, RuleUpdateRequest, parse_body

logger = logging.getLogger(__name__)


def register_recurring_routes(
    app: web.Application,
    rule_service: RuleService,
    owner_resolver: OwnerResolver,
) -> None:
    """Register /api/recurring routes.

    Args:
        app: aiohttp web application
        rule_service: Service owning rule persistence and reconciliation
        owner_resolver: Callable returning the caller's owner id
    """

    async def list_rules(request: web.Request) -> web.Response:
        owner_id = require_owner(request, owner_resolver)
        active_only = request.query.get("active", "").lower() in ("1", "true", "yes")
        rules = await rule_service.list_rules(owner_id, active_only=active_only)
        return web.json_response({"rules": [r.model_dump(mode="json") for r in rules]})

    async def create_rule(request: web.Request) -> web.Response:
        owner_id = require_owner(request, owner_resolver)
        body = await parse_body(request, RuleCreateRequest)
        result = await rule_service.create_rule(owner_id, body.to_fields())

        data = {
            "rule": result.rule.model_dump(mode="json"),
            "occurrencesGenerated": result.occurrences_generated,
        }
        if result.warning:
            data["warning"] = result.warning
        return web.json_response(data, status=201)

    async def get_rule(request: web.Request) -> web.Response:
        owner_id = require_owner(request, owner_resolver)
        rule = await rule_service.get_rule(owner_id, request.match_info["rule_id"])
        return web.json_response({"rule": rule.model_dump(mode="json")})

    async def update_rule(request: web.Request) -> web.Response:
        owner_id = require_owner(request, owner_resolver)
        body = await parse_body(request, RuleUpdateRequest)
        result = await rule_service.update_rule(owner_id, request.match_info["rule_id"], body.to_changes())
        return web.json_response(
            {"rule": result.rule.model_dump(mode="json"), "reconciled": result.reconciled.to_dict()}
        )

    async def delete_rule(request: web.Request) -> web.Response:
        owner_id = require_owner(request, owner_resolver)
        rule, cancelled = await rule_service.deactivate_rule(owner_id, request.match_info["rule_id"])
        return web.json_response({"rule": rule.model_dump(mode="json"), "occurrencesCancelled": cancelled})

    app.router.add_get("/api/recurring", list_rules)
    app.router.add_post("/api/recurring", create_rule)
    app.router.add_get("/api/recurring/{rule_id}", get_rule)
    app.router.add_patch("/api/recurring/{rule_id}", update_rule)
    app.router.add_delete("/api/recurring/{rule_id}", delete_rule)
    logger.debug("Recurring rule routes registered")
