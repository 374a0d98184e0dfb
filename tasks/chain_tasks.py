"""
Chain job handlers registered with the job scheduler
"""
from typing import TYPE_CHECKING
import logging

from models import JobKind

if TYPE_CHECKING:
    from scheduler import JobScheduler
    from services.game import WhisperGame

logger = logging.getLogger(__name__)


def register_chain_tasks(scheduler: "JobScheduler", game: "WhisperGame") -> None:
    """Bind every JobKind to its handler"""

    def fire_chain(chain_id: str) -> None:
        game.chains.fire(chain_id)

    def adjudicate_chain(chain_id: str) -> None:
        game.adjudicator.adjudicate(chain_id)

    def mirror_deadline(chain_id: str) -> None:
        """Close a mirrored round once every recipient window has settled"""
        if game.collector.mirror_settled(chain_id):
            game.adjudicator.adjudicate(chain_id)
        else:
            logger.debug(f"[JOBS] Mirrored chain {chain_id} still has an open window")

    scheduler.register(JobKind.FIRE.value, fire_chain)
    scheduler.register(JobKind.ADJUDICATE.value, adjudicate_chain)
    scheduler.register(JobKind.MIRROR_DEADLINE.value, mirror_deadline)
