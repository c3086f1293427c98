"""Central router registry for the notification API."""
from __future__ import annotations

from fastapi import FastAPI

from academy.routers import academy_notifications, notifications

ALL_ROUTERS = (
    academy_notifications.router,
    notifications.router,
)


def include_all_routers(app: FastAPI) -> None:
    for router in ALL_ROUTERS:
        app.include_router(router)
