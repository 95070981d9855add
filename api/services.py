"""Machine service routes."""

from fastapi import APIRouter, Query, Request

from api.base import success_response
from api.dependencies import get_caller, get_request_id


def create_services_router(services: dict) -> APIRouter:
    router = APIRouter(tags=["services"])

    provisioning_svc = services["provisioning"]

    @router.get("/services")
    def list_services(request: Request, limit: int = Query(100, ge=1, le=500)):
        entries = provisioning_svc.list_services(get_caller(request), limit=limit)

        data = []
        for entry in entries:
            item = entry["service"].model_dump(mode="json")
            item["display_status"] = entry["display_status"].value
            item["invoice"] = entry["invoice"].model_dump(mode="json") if entry["invoice"] else None
            data.append(item)

        return success_response(data, get_request_id(request)).model_dump(mode="json")

    return router
