"""In-process cron timers: presets and custom tasks, nothing persisted."""

from cadence.timers.engine import CroniterTrigger, TimerScheduler
from cadence.timers.models import PRESETS, TaskStatus, TimerPreset, TimerTask

__all__ = ["PRESETS", "CroniterTrigger", "TaskStatus", "TimerPreset", "TimerScheduler", "TimerTask"]
