"""Operator controls over the configured consumer topics."""
from typing import List, Optional

from fastapi import APIRouter, Depends

from core.consumer_lifecycle import ConsumerLifecycleManager

from ..dependencies import get_lifecycle, require_admin
from ..models import ConsumerStatusResponse


router = APIRouter(dependencies=[Depends(require_admin)])


def _status(manager: ConsumerLifecycleManager, failed: Optional[List[str]] = None) -> ConsumerStatusResponse:
    is_paused = getattr(manager.broker, "is_topic_paused", None)
    paused = [t for t in manager.all_topics() if is_paused and is_paused(t)]
    return ConsumerStatusResponse(
        topics=manager.all_topics(),
        consumers=manager.states(),
        paused_topics=paused,
        failed=list(failed or []),
    )


@router.get("", response_model=ConsumerStatusResponse)
async def list_consumers(manager: ConsumerLifecycleManager = Depends(get_lifecycle)):
    """Configured topics, consumer states and paused topics."""
    return _status(manager)


@router.post("/pause", response_model=ConsumerStatusResponse)
async def pause_consumers(manager: ConsumerLifecycleManager = Depends(get_lifecycle)):
    """
    Pause every configured topic.

    Topics without a registered consumer are paused at the broker too, so
    nothing is fetched for them once a consumer is attached. Failures for one
    topic are reported in ``failed`` and do not stop the others.
    """
    failed = await manager.pause_all()
    return _status(manager, failed)


@router.post("/resume", response_model=ConsumerStatusResponse)
async def resume_consumers(manager: ConsumerLifecycleManager = Depends(get_lifecycle)):
    """Resume every configured topic."""
    failed = await manager.resume_all()
    return _status(manager, failed)
