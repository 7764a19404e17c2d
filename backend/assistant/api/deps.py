"""
Composed FastAPI dependencies.

Route handlers take their collaborators from here. The Services graph is
built once in the app lifespan and stored on app.state; tests replace it
through dependency_overrides[get_services].
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from assistant.services.factory import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


AppServices = Annotated[Services, Depends(get_services)]
