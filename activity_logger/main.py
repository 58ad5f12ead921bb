from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional, Sequence, Tuple
from uuid import uuid4

import pytz

from .config import Settings, load_settings
from .models.activity import ActivityRecord
from .services.activity_store import ActivityStore, open_activity_store

LOGGER = logging.getLogger(__name__)

DEMO_ACTIVITIES: Sequence[Tuple[str, int]] = (
    ("login", 0),
    ("view_home", -60),
    ("view_profile", -120),
    ("logout", -180),
    ("purchase", -240),
    ("search", -300),
    ("add_to_cart", -360),
    ("view_product", -420),
    ("update_settings", -480),
    ("password_change", -540),
)


def print_activities(title: str, records: Iterable[ActivityRecord], echo: Callable[[str], None] = print) -> None:
    echo(f"\n{title}")
    for record in records:
        echo(record.describe())


def run_demo(
    store: ActivityStore,
    *,
    ttl_days: int,
    base_time: Optional[datetime] = None,
    echo: Callable[[str], None] = print,
) -> None:
    base_time = base_time or datetime.now(pytz.utc)
    user_id = uuid4()
    for activity_type, offset in DEMO_ACTIVITIES:
        store.record_activity(user_id, activity_type, base_time + timedelta(seconds=offset), ttl_days)

    another_user = uuid4()
    store.record_activity(another_user, "login", base_time - timedelta(seconds=600), ttl_days)
    store.record_activity(another_user, "view_home", base_time - timedelta(seconds=590), ttl_days)

    print_activities("All recent activities for main user:", store.get_recent_activities(user_id, 5), echo)
    print_activities("Activities for another user:", store.get_recent_activities(another_user, 5), echo)

    start = base_time - timedelta(seconds=300)
    end = base_time + timedelta(seconds=60)
    print_activities(
        "Activities for main user within time range:",
        store.get_activities_in_time_range(user_id, start, end),
        echo,
    )


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def main() -> None:
    settings = load_settings()
    configure_logging(settings)
    LOGGER.info("Starting activity logger demo")
    with open_activity_store(settings=settings) as store:
        run_demo(store, ttl_days=settings.default_ttl_days)


if __name__ == "__main__":
    main()
