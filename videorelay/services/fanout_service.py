"""Fan-out: deliver one stored video as a scheduled post to many accounts.

Each account gets its own schedule request. Requests run concurrently and
are isolated: one failure never cancels, retries or affects the others, and
every account yields exactly one FanOutResult.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from videorelay.schemas.upload import FanOutResult
from videorelay.services.aggregator import Account, AggregatorClient, AggregatorCredentials

logger = logging.getLogger("videorelay.fanout")

# Platforms whose ingestion needs the post typed as "video"; the aggregator
# expects "image" for every other platform even when the media is a video.
VIDEO_POST_PLATFORMS = frozenset({"tiktok"})


@dataclass(frozen=True)
class UploadContext:
    title: str
    description: str
    media_url: str
    schedule_at: datetime


def post_type_for(account: Account) -> str:
    return "video" if account.type.lower() in VIDEO_POST_PLATFORMS else "image"


def build_schedule_payload(context: UploadContext, account: Account) -> dict[str, Any]:
    return {
        "title": context.title,
        "description": context.description,
        "type": post_type_for(account),
        "medias": [
            {"type": "video", "url": context.media_url, "thumbnail": context.media_url},
        ],
        "scheduleAt": context.schedule_at.isoformat().replace("+00:00", "Z"),
        "accountId": account.id,
    }


def filter_accounts(accounts: list[Account], platforms: list[str] | None) -> list[Account]:
    """Keep accounts whose platform type is listed; no filter keeps all."""
    if not platforms:
        return list(accounts)
    wanted = {p.strip().lower() for p in platforms if p.strip()}
    return [a for a in accounts if a.type.lower() in wanted]


async def _deliver(
    client: AggregatorClient,
    credentials: AggregatorCredentials,
    context: UploadContext,
    account: Account,
) -> FanOutResult:
    try:
        await client.create_schedule(build_schedule_payload(context, account), credentials)
    except Exception as e:
        logger.warning("Failed to schedule for account %s (%s): %s", account.id, account.type, e)
        return FanOutResult(
            account_id=account.id,
            account_name=account.name,
            account_type=account.type,
            status="error",
            error=str(e) or type(e).__name__,
        )
    logger.info("Scheduled to %s (%s)", account.name, account.type)
    return FanOutResult(
        account_id=account.id,
        account_name=account.name,
        account_type=account.type,
        status="success",
    )


async def dispatch(
    client: AggregatorClient,
    credentials: AggregatorCredentials,
    context: UploadContext,
    accounts: list[Account],
) -> list[FanOutResult]:
    """Attempt every account once; results follow the order of `accounts`."""
    return list(
        await asyncio.gather(*(_deliver(client, credentials, context, a) for a in accounts))
    )


def count_successes(results: list[FanOutResult]) -> int:
    return sum(1 for r in results if r.status == "success")
