"""
Scheduler configuration management.
Follows the same pattern as common/config.py for consistency.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from decouple import config as env_config

from ..common.date_utils import DEFAULT_TIMEZONE


def _get_config_value(key: str, default: Any = None, cast: type = None) -> Any:
    """Read a value from the environment (.env included) with an optional cast."""
    if cast is bool:
        return env_config(key, default=default, cast=bool)
    value = env_config(key, default=default)
    if value is not None and cast is not None:
        return cast(value)
    return value


def _resolve_env(value: Any) -> Any:
    """Resolve ${VAR_NAME} references in string values."""
    if not isinstance(value, str):
        return value

    def replace(match):
        return _get_config_value(match.group(1), default='')

    return re.sub(r'\$\{([^}]+)\}', replace, value)


@dataclass
class DaemonConfig:
    """Daemon process configuration."""
    pid_file: str = '/var/run/fleetrent-scheduler.pid'
    log_file: str = '/var/log/fleetrent/scheduler.log'


@dataclass
class JobDefinition:
    """One scheduled job."""
    name: str
    display_name: str
    cron: str
    enabled: bool = True
    description: str = ''


# name -> (display name, cron, description)
DEFAULT_JOBS = {
    'daily_billing': ('Daily Rent Billing', '0 1 * * *', 'Debit the daily rate of every active contract'),
    'analytics_daily': ('Daily Analytics', '0 2 * * *', 'Revenue, utilization and KPIs for the previous day'),
    'analytics_weekly': ('Weekly Analytics', '0 3 * * sun', 'Fleet efficiency over the last 7 days'),
    'analytics_monthly': ('Monthly Analytics', '0 4 1 * *', 'Revenue and profit for the previous month'),
    'analytics_cleanup': ('Analytics Cleanup', '0 5 1 1 *', 'Delete cached metrics past the retention window'),
}


def _default_jobs() -> Dict[str, JobDefinition]:
    return {
        name: JobDefinition(name=name, display_name=display, cron=cron, description=description)
        for name, (display, cron, description) in DEFAULT_JOBS.items()
    }


@dataclass
class SlackConfig:
    """Slack alert configuration."""
    enabled: bool = False
    webhook_url: str = ''
    channel: str = '#fleet-billing-alerts'
    username: str = 'Fleet Scheduler'
    on_failure: bool = True
    on_success: bool = False


@dataclass
class EmailConfig:
    """Email alert configuration."""
    enabled: bool = False
    smtp_host: str = ''
    smtp_port: int = 587
    smtp_user: str = ''
    smtp_password: str = ''
    from_address: str = ''
    to_addresses: List[str] = field(default_factory=list)
    min_severity: str = 'error'


@dataclass
class AlertsConfig:
    """Alert channels configuration."""
    slack: SlackConfig = field(default_factory=SlackConfig)
    email: EmailConfig = field(default_factory=EmailConfig)


@dataclass
class SchedulerConfig:
    """
    Main scheduler configuration.
    Can be loaded from YAML files or environment variables.
    """
    daemon: DaemonConfig = field(default_factory=DaemonConfig)

    # APScheduler settings
    timezone: str = DEFAULT_TIMEZONE
    coalesce: bool = True               # Combine missed runs
    max_instances: int = 1              # One instance per job
    misfire_grace_time: int = 3600      # Allow 1 hour late
    executor_max_workers: int = 3       # Thread pool size

    # Graceful shutdown
    wait_for_jobs: bool = True

    jobs: Dict[str, JobDefinition] = field(default_factory=_default_jobs)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)

    @classmethod
    def from_yaml(cls, scheduler_path: str = None, alerts_path: str = None) -> 'SchedulerConfig':
        """
        Load configuration from YAML files.
        Environment variables can be referenced as ${VAR_NAME}.
        Paths default to the shared config directory (backend/config).
        """
        from ..common.config_loader import get_config

        config = cls()
        config_dir = get_config().config_dir
        scheduler_file = Path(scheduler_path) if scheduler_path else config_dir / 'scheduler.yaml'
        alerts_file = Path(alerts_path) if alerts_path else config_dir / 'alerts.yaml'

        if scheduler_file.exists():
            with open(scheduler_file) as f:
                data = yaml.safe_load(f)
            if data and 'scheduler' in data:
                config._apply_scheduler_section(data['scheduler'])

        if alerts_file.exists():
            with open(alerts_file) as f:
                data = yaml.safe_load(f)
            if data and 'alerts' in data:
                config._apply_alerts_section(data['alerts'])

        timezone_override = _get_config_value('FLEETRENT_TIMEZONE', default=None)
        if timezone_override:
            config.timezone = timezone_override

        return config

    def _apply_scheduler_section(self, sched: Dict[str, Any]) -> None:
        if 'daemon' in sched:
            d = sched['daemon']
            self.daemon = DaemonConfig(
                pid_file=_resolve_env(d.get('pid_file', self.daemon.pid_file)),
                log_file=_resolve_env(d.get('log_file', self.daemon.log_file)),
            )

        if 'engine' in sched:
            e = sched['engine']
            self.timezone = e.get('timezone', self.timezone)
            self.wait_for_jobs = e.get('wait_for_jobs', self.wait_for_jobs)
            if 'job_defaults' in e:
                jd = e['job_defaults']
                self.coalesce = jd.get('coalesce', self.coalesce)
                self.max_instances = jd.get('max_instances', self.max_instances)
                self.misfire_grace_time = jd.get('misfire_grace_time', self.misfire_grace_time)
            if 'executor' in e:
                self.executor_max_workers = e['executor'].get('max_workers', self.executor_max_workers)

        for name, jdef in (sched.get('jobs') or {}).items():
            if name not in self.jobs:
                raise ValueError(f"Unknown scheduler job in config: {name}")
            job = self.jobs[name]
            jdef = jdef or {}
            job.cron = jdef.get('cron', job.cron)
            job.enabled = jdef.get('enabled', job.enabled)
            job.display_name = jdef.get('display_name', job.display_name)

    def _apply_alerts_section(self, a: Dict[str, Any]) -> None:
        if 'slack' in a:
            s = a['slack']
            self.alerts.slack = SlackConfig(
                enabled=s.get('enabled', False),
                webhook_url=_resolve_env(s.get('webhook_url', '')),
                channel=s.get('channel', SlackConfig.channel),
                username=s.get('username', SlackConfig.username),
                on_failure=s.get('on_failure', True),
                on_success=s.get('on_success', False),
            )

        if 'email' in a:
            e = a['email']
            self.alerts.email = EmailConfig(
                enabled=e.get('enabled', False),
                smtp_host=_resolve_env(e.get('smtp_host', '')),
                smtp_port=e.get('smtp_port', 587),
                smtp_user=_resolve_env(e.get('smtp_user', '')),
                smtp_password=_resolve_env(e.get('smtp_password', '')),
                from_address=e.get('from_address', ''),
                to_addresses=e.get('to_addresses', []),
                min_severity=e.get('min_severity', 'error'),
            )

    @classmethod
    def from_env(cls) -> 'SchedulerConfig':
        """
        Load configuration from environment variables.
        Useful for simple deployments without YAML files.
        """
        config = cls()
        config.daemon.pid_file = _get_config_value('SCHEDULER_PID_FILE', default=config.daemon.pid_file)
        config.daemon.log_file = _get_config_value('SCHEDULER_LOG_FILE', default=config.daemon.log_file)
        config.timezone = _get_config_value('FLEETRENT_TIMEZONE', default=config.timezone)
        config.executor_max_workers = _get_config_value(
            'SCHEDULER_MAX_WORKERS', default=config.executor_max_workers, cast=int
        )

        slack_url = _get_config_value('SLACK_WEBHOOK_URL', default='')
        if slack_url:
            config.alerts.slack = SlackConfig(
                enabled=True,
                webhook_url=slack_url,
                channel=_get_config_value('SLACK_CHANNEL', default=SlackConfig.channel),
            )

        return config

    def get_job(self, name: str) -> Optional[JobDefinition]:
        """Get job definition by name."""
        return self.jobs.get(name)

    def get_enabled_jobs(self) -> List[JobDefinition]:
        """Get all enabled jobs."""
        return [j for j in self.jobs.values() if j.enabled]
