"""
Health check and statistics endpoints.

Relay state belongs to the event loop, so both handlers are async and read it
there; directory counts are fetched in the threadpool.
"""
from datetime import datetime, timezone
from typing import Dict

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from duolink.core.config import settings
from duolink.core.memory.db import db_session
from duolink.core.memory.repository import ConnectionRepository, UserRepository

router = APIRouter(tags=["health"])


def _directory_counts() -> Dict[str, int]:
    with db_session() as db:
        return {
            "users": UserRepository.count(db),
            "activeConnections": len(ConnectionRepository.list_active_users(db)),
        }


@router.get("/health")
async def health(request: Request):
    """
    Health check endpoint.

    Returns:
        Service status plus current connection and room counts
    """
    relay = request.app.state.relay
    stats = relay.stats()
    return {
        "status": "ok" if relay.running else "stopping",
        "service": settings.service_name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "connectionCount": stats["connectionCount"],
        "roomCount": stats["roomCount"],
    }


@router.get("/api/stats")
async def stats(request: Request):
    """Relay statistics and directory counts."""
    relay_stats = request.app.state.relay.stats()
    directory = await run_in_threadpool(_directory_counts)
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "relay": relay_stats,
        "directory": directory,
    }
