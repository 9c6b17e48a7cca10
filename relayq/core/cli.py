# relayq/core/cli.py
"""
CLI for the relayq worker, scheduler, bot poller and config check.

Everything is configured from `RELAYQ_*` environment variables (optionally
loaded from a .env file):

    relayq worker --loglevel INFO
    relayq worker --with-scheduler --with-bot   # single process, memory broker
    relayq scheduler
    relayq bot
    relayq check --live
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from relayq.collaborators.cache import Cache, MemoryCache, RedisCache
from relayq.collaborators.gateway import TelegramGateway
from relayq.collaborators.moderation import LoggingModerationSink
from relayq.collaborators.store_sql import SqlStore
from relayq.core.brokers.base import Broker
from relayq.core.brokers.memory import MemoryBroker
from relayq.core.brokers.postgres import PostgresBroker
from relayq.core.errors import ConfigurationError, ErrorCode, RelayqError
from relayq.core.logging import get_logger, set_default_level
from relayq.core.models.config import RelayqConfig
from relayq.core.models.kinds import TaskKind
from relayq.core.models.payloads import MemeSubscriptionPayload
from relayq.core.queue import TaskQueue
from relayq.core.scheduler import Scheduler
from relayq.core.types.status import Lane
from relayq.core.worker.config import WorkerConfig
from relayq.core.worker.worker import Worker
from relayq.mailing.failover import MailFailover
from relayq.mailing.providers import build_providers
from relayq.secret_messaging.bot import SecretMessagingBot
from relayq.secret_messaging.polling import UpdatePoller
from relayq.secret_messaging.protocol import SecretMessaging
from relayq.tasks.handlers import HandlerDeps, build_registry

MEME_SCHEDULE_NAME = 'meme_subscription'


def setup_logging(loglevel: str) -> None:
    """Configure logging level globally."""
    level = getattr(logging, loglevel.upper(), logging.INFO)
    set_default_level(level)

    for name in logging.Logger.manager.loggerDict:
        if isinstance(name, str) and name.startswith('relayq.'):
            lgr = logging.getLogger(name)
            lgr.setLevel(level)
            for handler in lgr.handlers:
                handler.setLevel(level)


def load_config(env_file: Optional[str]) -> RelayqConfig:
    return RelayqConfig.from_env(env_file=env_file)


def _require(value: Optional[str], setting: str, env_var: str) -> str:
    if not value:
        raise ConfigurationError(
            message=f'{setting} is not configured',
            code=ErrorCode.CONFIG_MISSING_VALUE,
            help_text=f'set {env_var}',
        )
    return value


# ----------------- assembly -----------------


@dataclass
class Runtime:
    """Collaborators shared by the services running in one process."""

    config: RelayqConfig
    broker: Broker
    queue: TaskQueue
    closers: list[Callable[[], Awaitable[Any]]] = field(default_factory=list)
    store: Optional[SqlStore] = None
    cache: Optional[Cache] = None
    gateway: Optional[TelegramGateway] = None
    usecase: Optional[SecretMessaging] = None

    async def aclose(self) -> None:
        for close in reversed(self.closers):
            try:
                await close()
            except Exception as e:
                get_logger('cli').warning(f'Error while closing resources: {e}')


def build_broker(config: RelayqConfig) -> Broker:
    if config.broker.backend == 'postgres':
        assert config.broker.postgres is not None
        return PostgresBroker(config.broker.postgres)
    return MemoryBroker()


async def build_runtime(config: RelayqConfig, *, messaging: bool) -> Runtime:
    """
    Build the broker and queue, plus the messaging collaborators when
    `messaging` is set (store, cache, bot gateway, secret messaging usecase).
    """
    broker = build_broker(config)
    if isinstance(broker, PostgresBroker):
        await broker.ensure_schema_initialized()
    queue = TaskQueue(
        broker,
        policies=config.policy_table(),
        enqueue_timeout_seconds=config.worker.enqueue_timeout_seconds,
    )
    runtime = Runtime(config=config, broker=broker, queue=queue)
    if not messaging:
        return runtime

    database_url = _require(
        config.store.database_url, 'store database url', 'RELAYQ_STORE__DATABASE_URL'
    )
    bot_token = _require(
        config.telegram.bot_token, 'telegram bot token', 'RELAYQ_TELEGRAM__BOT_TOKEN'
    )

    store = SqlStore.from_url(database_url, echo=config.store.echo)
    runtime.closers.append(store.close)
    await store.create_schema()

    if config.redis_url:
        redis_cache = RedisCache.from_url(config.redis_url)
        runtime.closers.append(redis_cache.close)
        cache: Cache = redis_cache
    else:
        cache = MemoryCache()

    gateway = TelegramGateway(
        bot_token,
        api_base_url=config.telegram.api_base_url,
        timeout_seconds=config.telegram.request_timeout_seconds,
    )
    runtime.closers.append(gateway.close)

    runtime.store = store
    runtime.cache = cache
    runtime.gateway = gateway
    runtime.usecase = SecretMessaging(
        store,
        cache,
        queue,
        LoggingModerationSink(),
        session_ttl_hours=config.telegram.session_ttl_hours,
        report_cache_seconds=config.telegram.report_cache_seconds,
        block_cache_seconds=config.telegram.block_cache_seconds,
    )
    return runtime


def build_worker(runtime: Runtime) -> Worker:
    assert runtime.store is not None and runtime.gateway is not None
    assert runtime.usecase is not None
    config = runtime.config

    providers = build_providers(config.mail)
    for provider in providers:
        runtime.closers.append(provider.close)

    registry = build_registry(
        HandlerDeps(
            store=runtime.store,
            queue=runtime.queue,
            gateway=runtime.gateway,
            failover=MailFailover(providers),
            usecase=runtime.usecase,
            siakad=config.siakad,
        )
    )
    return Worker(
        runtime.broker,
        registry,
        WorkerConfig(
            concurrency=config.worker.concurrency,
            health_check_interval_seconds=config.worker.health_check_interval_seconds,
            poll_interval_seconds=config.worker.poll_interval_seconds,
            recovery_interval_seconds=config.worker.recovery_interval_seconds,
            stale_grace_seconds=config.worker.stale_grace_seconds,
        ),
    )


def build_scheduler(runtime: Runtime) -> Scheduler:
    schedule = runtime.config.schedule
    scheduler = Scheduler(
        runtime.queue,
        check_interval_seconds=schedule.check_interval_seconds,
        tz=schedule.timezone,
    )
    if schedule.meme_subscription_cronspec:
        scheduler.register(
            MEME_SCHEDULE_NAME,
            schedule.meme_subscription_cronspec,
            TaskKind.MEME_SUBSCRIPTION,
            MemeSubscriptionPayload,
            lane=Lane.DEFAULT,
        )
    return scheduler


def build_poller(runtime: Runtime) -> UpdatePoller:
    assert runtime.gateway is not None and runtime.usecase is not None
    telegram = runtime.config.telegram
    bot = SecretMessagingBot(
        runtime.usecase,
        runtime.gateway,
        runtime.queue,
        start_link=telegram.start_link,
        report_cache_seconds=telegram.report_cache_seconds,
        block_cache_seconds=telegram.block_cache_seconds,
    )
    return UpdatePoller(
        runtime.gateway, bot, max_concurrent_updates=telegram.max_concurrent_updates
    )


def _install_signal_handlers(*stoppables: Any) -> None:
    logger = get_logger('cli')
    loop = asyncio.get_running_loop()

    def signal_handler() -> None:
        logger.info('Received interrupt signal, stopping...')
        for service in stoppables:
            service.request_stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            pass


def _warn_if_memory_broker(config: RelayqConfig, role: str) -> None:
    if config.broker.backend == 'memory':
        get_logger('cli').warning(
            f'{role} is using the in-process memory broker; tasks are not shared '
            'with other processes'
        )


# ----------------- commands -----------------


async def _run_together(services: list[Any]) -> None:
    """Run services side by side; when one of them exits, the others are asked to stop."""

    async def run(service: Any) -> None:
        try:
            await service.run_forever()
        finally:
            for other in services:
                other.request_stop()

    await asyncio.gather(*(run(service) for service in services))


def _run(main: Callable[[], Awaitable[None]], role: str) -> None:
    logger = get_logger('cli')
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info(f'{role} interrupted by user')
    except RelayqError as e:
        logger.error(str(e))
        sys.exit(1)
    except Exception as e:
        logger.error(f'{role} failed: {e}')
        sys.exit(1)


def worker_command(args: argparse.Namespace) -> None:
    """Handle worker command."""
    logger = get_logger('cli')
    setup_logging(args.loglevel)
    logger.info(f'Starting relayq worker with loglevel={args.loglevel}')

    async def run_worker() -> None:
        config = load_config(args.env_file)
        config.log_config(logger)
        if not (args.with_scheduler and args.with_bot):
            _warn_if_memory_broker(config, 'worker')

        runtime = await build_runtime(config, messaging=True)
        try:
            worker = build_worker(runtime)
            services: list[Any] = [worker]
            if args.with_scheduler:
                services.append(build_scheduler(runtime))
            if args.with_bot:
                services.append(build_poller(runtime))
            _install_signal_handlers(*services)

            logger.info(f'Worker handles: {[kind.value for kind in worker.registry]}')
            await _run_together(services)
        finally:
            await runtime.aclose()

    _run(run_worker, 'Worker')


def scheduler_command(args: argparse.Namespace) -> None:
    """Handle scheduler command."""
    logger = get_logger('cli')
    setup_logging(args.loglevel)
    logger.info(f'Starting scheduler with loglevel={args.loglevel}')

    async def run_scheduler() -> None:
        config = load_config(args.env_file)
        _warn_if_memory_broker(config, 'scheduler')

        runtime = await build_runtime(config, messaging=False)
        try:
            scheduler = build_scheduler(runtime)
            if not scheduler.entries:
                raise ConfigurationError(
                    message='no schedules configured',
                    code=ErrorCode.CONFIG_MISSING_VALUE,
                    help_text='set RELAYQ_SCHEDULE__MEME_SUBSCRIPTION_CRONSPEC',
                )
            _install_signal_handlers(scheduler)
            await scheduler.run_forever()
        finally:
            await runtime.broker.close()
            await runtime.aclose()

    _run(run_scheduler, 'Scheduler')


def bot_command(args: argparse.Namespace) -> None:
    """Handle bot command: long-poll updates and enqueue their side effects."""
    logger = get_logger('cli')
    setup_logging(args.loglevel)
    logger.info(f'Starting bot poller with loglevel={args.loglevel}')

    async def run_bot() -> None:
        config = load_config(args.env_file)
        _warn_if_memory_broker(config, 'bot')

        runtime = await build_runtime(config, messaging=True)
        try:
            poller = build_poller(runtime)
            _install_signal_handlers(poller)
            await poller.run_forever()
        finally:
            await runtime.broker.close()
            await runtime.aclose()

    _run(run_bot, 'Bot')


def check_command(args: argparse.Namespace) -> None:
    """Validate configuration without starting services."""
    setup_logging(args.loglevel)
    try:
        config = load_config(args.env_file)
    except RelayqError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)

    if args.live:

        async def ping() -> None:
            broker = build_broker(config)
            try:
                await broker.ping()
            finally:
                await broker.close()

        try:
            asyncio.run(ping())
        except Exception as e:
            print(f'error: broker is unreachable: {e}', file=sys.stderr)
            sys.exit(1)

    print(f'ok: configuration is valid\n  broker: {config.broker.backend}')
    sys.exit(0)


def _add_common_arguments(parser: argparse.ArgumentParser, loglevel: str = 'INFO') -> None:
    parser.add_argument(
        '--env-file',
        default=None,
        help='Path of a .env file to load before reading RELAYQ_* variables',
    )
    parser.add_argument(
        '--loglevel',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        default=loglevel,
        type=str.upper,
        help=f'Logging level (default: {loglevel})',
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='relayq',
        description='relayq task runtime - worker, scheduler and bot management',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    worker_parser = subparsers.add_parser('worker', help='Start a relayq worker')
    _add_common_arguments(worker_parser)
    worker_parser.add_argument(
        '--with-scheduler',
        action='store_true',
        default=False,
        help='Also run the scheduler in this process',
    )
    worker_parser.add_argument(
        '--with-bot',
        action='store_true',
        default=False,
        help='Also poll bot updates in this process',
    )

    scheduler_parser = subparsers.add_parser('scheduler', help='Start the scheduler service')
    _add_common_arguments(scheduler_parser)

    bot_parser = subparsers.add_parser('bot', help='Poll bot updates and dispatch commands')
    _add_common_arguments(bot_parser)

    check_parser = subparsers.add_parser(
        'check', help='Validate configuration without starting services'
    )
    _add_common_arguments(check_parser, loglevel='WARNING')
    check_parser.add_argument(
        '--live',
        action='store_true',
        default=False,
        help='Also check broker connectivity',
    )
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """Main CLI entry point."""
    try:
        parser = build_parser()
        args = parser.parse_args(argv)

        match args.command:
            case 'worker':
                worker_command(args)
            case 'scheduler':
                scheduler_command(args)
            case 'bot':
                bot_command(args)
            case 'check':
                check_command(args)
            case _:
                parser.print_help()
                sys.exit(1)
    except KeyboardInterrupt:
        print('\nInterrupted by user')
        sys.exit(0)


if __name__ == '__main__':
    main()
