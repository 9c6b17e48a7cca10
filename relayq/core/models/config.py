# relayq/core/models/config.py
from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator

from relayq.core import defaults
from relayq.core.errors import (
    ConfigurationError,
    ErrorCode,
    ValidationReport,
    raise_collected,
)
from relayq.core.models.broker import BrokerConfig
from relayq.core.models.kinds import TaskKind
from relayq.core.models.policy import PolicyTable, TaskPolicy
from relayq.core.scheduler.cron import is_valid_cron_spec
from relayq.core.utils.url import mask_url_password

ENV_PREFIX = 'RELAYQ_'
ENV_NESTING = '__'


class WorkerSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    concurrency: int = Field(default=defaults.DEFAULT_WORKER_CONCURRENCY, ge=1, le=1000)
    health_check_interval_seconds: float = Field(
        default=defaults.DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS, gt=0
    )
    poll_interval_seconds: float = Field(
        default=defaults.DEFAULT_POLL_INTERVAL_SECONDS, gt=0
    )
    enqueue_timeout_seconds: float = Field(
        default=defaults.DEFAULT_ENQUEUE_TIMEOUT_SECONDS, gt=0
    )
    recovery_interval_seconds: float = Field(
        default=defaults.DEFAULT_RECOVERY_INTERVAL_SECONDS, gt=0
    )
    stale_grace_seconds: float = Field(default=defaults.DEFAULT_STALE_GRACE_SECONDS, ge=0)


class ScheduleSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    check_interval_seconds: float = Field(
        default=defaults.DEFAULT_SCHEDULE_CHECK_INTERVAL_SECONDS, gt=0
    )
    # None disables the meme broadcast schedule
    meme_subscription_cronspec: Optional[str] = None
    timezone: str = 'UTC'


class TelegramSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    bot_token: Optional[str] = None
    start_link: str = ''
    api_base_url: str = 'https://api.telegram.org'
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    session_ttl_hours: int = Field(default=defaults.DEFAULT_SESSION_TTL_HOURS, ge=1)
    report_cache_seconds: int = Field(default=defaults.DEFAULT_REPORT_CACHE_SECONDS, ge=0)
    block_cache_seconds: int = Field(default=defaults.DEFAULT_BLOCK_CACHE_SECONDS, ge=0)
    # Bot updates handled concurrently by the poller
    max_concurrent_updates: int = Field(default=defaults.DEFAULT_MAX_CONCURRENT_UPDATES, ge=1)


class MailSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    sender_email: str = 'noreply@localhost'
    sender_name: str = 'relayq'
    request_timeout_seconds: float = Field(default=5.0, gt=0)
    sendinblue_api_key: Optional[str] = None
    sendinblue_url: str = 'https://api.brevo.com/v3/smtp/email'
    mailgun_domain: Optional[str] = None
    mailgun_api_key: Optional[str] = None
    mailgun_base_url: str = 'https://api.mailgun.net/v3'
    mailgun_activated: bool = False


class SiakadSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_url: str = 'https://siakadu.unila.ac.id/uploads/fotomhs'
    storage_dir: str = 'storage/siakad'
    request_timeout_seconds: float = Field(default=15.0, gt=0)


class StoreSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Users, sessions, message nodes and mail records
    database_url: Optional[str] = None
    echo: bool = False


class RelayqConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    broker: BrokerConfig = Field(default_factory=BrokerConfig)
    redis_url: Optional[str] = Field(
        default=None, description='TTL cache backend; in-process cache when unset'
    )
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    schedule: ScheduleSettings = Field(default_factory=ScheduleSettings)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    mail: MailSettings = Field(default_factory=MailSettings)
    siakad: SiakadSettings = Field(default_factory=SiakadSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    policies: dict[TaskKind, TaskPolicy] = Field(
        default_factory=dict, description='Per-kind overrides of the default policy table'
    )

    @model_validator(mode='after')
    def validate_cross_fields(self) -> RelayqConfig:
        """Collect all independent errors and raise them together."""
        report = ValidationReport('config')

        if self.broker.backend == 'postgres' and self.broker.postgres is None:
            report.add(
                ConfigurationError(
                    message='postgres broker selected without connection settings',
                    code=ErrorCode.CONFIG_MISSING_VALUE,
                    notes=["broker.backend is 'postgres' but broker.postgres is None"],
                    help_text='set RELAYQ_BROKER__POSTGRES__DATABASE_URL',
                )
            )

        cronspec = self.schedule.meme_subscription_cronspec
        if cronspec is not None and not is_valid_cron_spec(cronspec):
            report.add(
                ConfigurationError(
                    message='invalid meme subscription cron spec',
                    code=ErrorCode.CONFIG_INVALID_SCHEDULE,
                    notes=[f'got: {cronspec!r}'],
                    help_text="use a five-field cron expression, e.g. '0 9 * * *'",
                )
            )

        if self.mail.mailgun_activated and not (
            self.mail.mailgun_domain and self.mail.mailgun_api_key
        ):
            report.add(
                ConfigurationError(
                    message='mailgun activated without credentials',
                    code=ErrorCode.CONFIG_MISSING_VALUE,
                    notes=['mail.mailgun_domain and mail.mailgun_api_key are required'],
                )
            )

        raise_collected(report)
        return self

    def policy_table(self) -> PolicyTable:
        return PolicyTable(self.policies)

    @classmethod
    def from_env(
        cls,
        env_file: str | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> RelayqConfig:
        """
        Build the config from `RELAYQ_*` environment variables.

        Nested fields use a double underscore, e.g. `RELAYQ_WORKER__CONCURRENCY=20`
        or `RELAYQ_BROKER__POSTGRES__DATABASE_URL=...`. `RELAYQ_POLICIES` takes a
        JSON object keyed by task kind. When `environ` is None the process
        environment is used, after loading `env_file` (or `.env`) with python-dotenv.
        """
        if environ is None:
            load_dotenv(env_file, override=False)
            environ = os.environ

        data: dict[str, Any] = {}
        for key, value in environ.items():
            if not key.startswith(ENV_PREFIX):
                continue
            path = key[len(ENV_PREFIX):].lower().split(ENV_NESTING)
            if path == ['policies']:
                try:
                    data['policies'] = json.loads(value)
                except json.JSONDecodeError as e:
                    raise ConfigurationError(
                        message=f'{key} is not valid JSON',
                        code=ErrorCode.CONFIG_INVALID_POLICY,
                        notes=[str(e)],
                        help_text=(
                            'use a JSON object keyed by task kind, e.g. '
                            '{"task:mailing": {"max_retry": 5}}'
                        ),
                    ) from e
                continue
            node = data
            for part in path[:-1]:
                node = node.setdefault(part, {})
            node[path[-1]] = value
        return cls.model_validate(data)

    def log_config(self, logger: Optional[logging.Logger] = None) -> None:
        """Log the effective config with secrets masked."""
        if logger is None:
            logger = logging.getLogger()
        logger.info('RelayqConfig:\n%s', self._format_for_logging())

    def _format_for_logging(self) -> str:
        lines: list[str] = [f'  broker: {self.broker.backend}']
        if self.broker.postgres is not None:
            lines.append(
                f'    database_url: {mask_url_password(self.broker.postgres.database_url)}'
            )
            lines.append(f'    pool_size: {self.broker.postgres.pool_size}')
        lines.append(
            f'  cache: {mask_url_password(self.redis_url) if self.redis_url else "in-process"}'
        )
        if self.store.database_url:
            lines.append(f'  store: {mask_url_password(self.store.database_url)}')
        lines.append('  worker:')
        lines.append(f'    concurrency: {self.worker.concurrency}')
        lines.append(
            f'    health_check_interval: {self.worker.health_check_interval_seconds}s'
        )
        lines.append('  schedule:')
        lines.append(
            f'    meme_subscription_cronspec: {self.schedule.meme_subscription_cronspec}'
        )
        lines.append('  telegram:')
        lines.append(f'    bot_token: {"***" if self.telegram.bot_token else None}')
        lines.append(f'    session_ttl_hours: {self.telegram.session_ttl_hours}')
        lines.append('  mail providers:')
        lines.append(f'    sendinblue: {bool(self.mail.sendinblue_api_key)}')
        lines.append(f'    mailgun: {self.mail.mailgun_activated}')
        if self.policies:
            lines.append('  policy overrides:')
            for kind, policy in self.policies.items():
                lines.append(
                    f'    - {kind.value} (max_retry={policy.max_retry}, '
                    f'timeout={policy.timeout_seconds}s)'
                )
        return '\n'.join(lines)
