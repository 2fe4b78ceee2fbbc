"""Scheduled tasks for CareQueue.

- Expired slot hold release
"""

from carequeue.tasks.slot_holds import run_slot_hold_expiry_task

__all__ = [
    "run_slot_hold_expiry_task",
]
