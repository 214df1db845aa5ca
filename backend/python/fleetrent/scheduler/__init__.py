"""
Fleet Scheduler

Timer adapter for the billing and analytics runs with:
- APScheduler cron triggers in the operating timezone
- Job execution history in the database
- Slack/email alerts on failures and billing summaries
- Manual runs through the same code path as scheduled ones
"""

from .config import JobDefinition, SchedulerConfig
from .models import JobHistory
from .alert_manager import AlertContext, AlertManager
from .engine import SchedulerEngine

__all__ = [
    'SchedulerConfig',
    'JobDefinition',
    'JobHistory',
    'SchedulerEngine',
    'AlertManager',
    'AlertContext',
]
