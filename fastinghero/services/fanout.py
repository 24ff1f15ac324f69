"""Tribe fan-out for newly raised flares.

All attribution decisions for the broadcast live in ``compose_flare_message``:
an anonymous flare never puts the owner's name or id into the payload.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

from fastinghero.core.sos_policies import ANONYMOUS_SENDER_NAME, FANOUT_BATCH_SIZE
from fastinghero.domain.sos import Flare, NotificationKind
from fastinghero.services.directory_service import TribeDirectory
from fastinghero.services.push_service import PushError, PushGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlareMessage:
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)


def compose_flare_message(flare: Flare, sender_name: str | None) -> FlareMessage:
    name = ANONYMOUS_SENDER_NAME if flare.anonymous or not sender_name else sender_name
    hours = math.floor(flare.hours_fasted)
    return FlareMessage(
        title=f"Tribe Alert: {name} needs backup",
        body=f"Struggling at hour {hours}. Send hype to keep them in the fight.",
        data={
            "flare_id": flare.id,
            "action": "send_hype",
            "screen": "sos",
        },
    )


def chunked(items: list[int], size: int) -> list[list[int]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class FanoutDispatcher:
    def __init__(self, tribes: TribeDirectory, push: PushGateway, batch_size: int = FANOUT_BATCH_SIZE) -> None:
        self.tribes = tribes
        self.push = push
        self.batch_size = batch_size

    def dispatch(self, flare: Flare, sender_name: str | None) -> int:
        """Notify every tribe member except the owner. Returns recipients accepted by push.

        Push failures are logged per batch and never raised.
        """
        if flare.tribe_id is None:
            return 0
        recipients = [uid for uid in self.tribes.members_of(flare.tribe_id) if uid != flare.owner_id]
        if not recipients:
            return 0

        message = compose_flare_message(flare, sender_name)
        delivered = 0
        for batch in chunked(recipients, self.batch_size):
            try:
                self.push.send_batch(batch, message.title, message.body, NotificationKind.FLARE_RAISED, message.data)
                delivered += len(batch)
            except PushError as exc:
                logger.warning("Fan-out batch failed for flare %s (%s recipients): %s", flare.id, len(batch), exc)
        logger.info("Fan-out for flare %s reached %s/%s tribe members", flare.id, delivered, len(recipients))
        return delivered
