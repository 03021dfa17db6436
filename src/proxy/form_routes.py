"""Public form endpoints: list published forms and submit responses."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from src.forms.service import FormValidationError
from src.store.db import FormNotFoundError

if TYPE_CHECKING:
    from src.forms.service import FormService
    from src.store.db import ChatDB


def create_form_router(db: ChatDB, service: FormService) -> APIRouter:
    router = APIRouter(prefix="/api/forms")

    @router.get("")
    async def list_published() -> JSONResponse:
        return JSONResponse(
            [f.model_dump(mode="json") for f in db.list_forms(published_only=True)]
        )

    @router.get("/{form_id}")
    async def get_published(form_id: str) -> JSONResponse:
        form = db.get_form(form_id)
        if form is None or not form.is_published:
            return JSONResponse({"error": "Form not found"}, status_code=404)
        return JSONResponse(form.model_dump(mode="json"))

    @router.post("/{form_id}/submit")
    async def submit(form_id: str, request: Request) -> JSONResponse:
        body = await request.json()
        if not isinstance(body, dict):
            body = {}
        user_email = body.get("user_email")
        data = body.get("data")
        if not user_email or not isinstance(data, dict):
            return JSONResponse(
                {"error": "user_email and data are required"}, status_code=400,
            )
        try:
            response = await service.submit(form_id, user_email, data)
        except FormNotFoundError:
            return JSONResponse({"error": "Form not found"}, status_code=404)
        except FormValidationError as e:
            return JSONResponse({"error": "Validation failed", "fields": e.errors}, status_code=422)
        return JSONResponse(response.model_dump(mode="json"), status_code=201)

    return router
