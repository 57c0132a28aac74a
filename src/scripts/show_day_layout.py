#!/usr/bin/env python3
"""
Fetch one day from the task service and print the per-member column layout.

Usage:
    uv run python src/scripts/show_day_layout.py [YYYY-MM-DD]
"""

import asyncio
import sys
from datetime import date, datetime, time, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.config import CALENDAR_TIMEZONE, TASK_API_URL
from core.task_client import get_task_client
from models.calendar import Member
from services.board import CalendarBoard


async def main():
    """Print the layout of every member column for one day."""
    day = date.fromisoformat(sys.argv[1]) if len(sys.argv) > 1 else date.today()
    tz = ZoneInfo(CALENDAR_TIMEZONE)
    start = datetime.combine(day, time(0), tzinfo=tz)
    end = start + timedelta(days=1)

    print(f"Fetching tasks for {day} from {TASK_API_URL}...\n")
    board = CalendarBoard.create(echo=True)
    try:
        result = await board.refresher.fetch_range(start, end)
    finally:
        await get_task_client().aclose()

    if result is None:
        print(f"Could not load tasks: {board.refresher.error}")
        return

    # Members are discovered from the tasks themselves
    members = {}
    for task in board.store.tasks():
        for ref in task.assigned_members_data:
            members.setdefault(ref.id, Member(id=ref.id, name=ref.name, email=ref.email))
        for member_id in task.assigned_members:
            members.setdefault(member_id, Member(id=member_id, name=member_id))
    board.members = sorted(members.values(), key=lambda m: m.name)

    view = board.render_day(day)
    print(f"Found {len(board.store)} tasks\n")
    print("=" * 80)

    if view.badges:
        print("\nBadges: " + "  ".join(f"{b.emoji} {b.name}" for b in view.badges))

    for member_id, positions in view.columns.items():
        name = next((m.name for m in board.members if m.id == member_id), "Unassigned")
        print(f"\n{name} ({len(positions)} tasks)")
        for pos in positions:
            task = board.store.get(pos.task_id)
            print(
                f"  [{pos.column_index + 1}/{pos.column_count}] "
                f"{pos.start:%H:%M}-{pos.end:%H:%M}  {task.title}"
            )
            print(f"      top={pos.top:.0f}px height={pos.height:.0f}px left={pos.left:.1f}% width={pos.width:.1f}%")
        print("-" * 80)

    print("\nDone!")


if __name__ == "__main__":
    asyncio.run(main())
