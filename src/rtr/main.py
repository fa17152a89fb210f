# main.py
from typing import Optional

from rtr.adapters.aiohttp_tooling_adapter import AioHttpToolingConnection, TokenProvider
from rtr.adapters.retry_tenacity import TenacityRetryAdapter
from rtr.core.config import TestRunManagerConfig
from rtr.core.interfaces.connection import ToolingConnectionPort
from rtr.core.interfaces.streaming import TransportFactory
from rtr.core.logging_config import configure_logging
from rtr.core.managers.test_run_manager import TestRunManager
from rtr.core.settings import RtrSettings, app_settings, logger


# main lives at the outermost layer (not in core)
# Instantiates the concrete adapters and wires them into the run manager.
# The push transport is supplied by the caller through `transport_factory`.

def create_tooling_connection(
    settings: RtrSettings = app_settings,
    token_provider: Optional[TokenProvider] = None,
) -> AioHttpToolingConnection:
    if settings.RTR_INSTANCE_URL is None:
        raise ValueError("RTR_INSTANCE_URL is not set")
    access_token = settings.RTR_ACCESS_TOKEN.get_secret_value() if settings.RTR_ACCESS_TOKEN else None
    return AioHttpToolingConnection(
        instance_url=str(settings.RTR_INSTANCE_URL),
        api_version=settings.RTR_API_VERSION,
        access_token=access_token,
        token_provider=token_provider,
        timeout=settings.RTR_HTTP_TIMEOUT,
    )


def create_test_run_manager(
    connection: ToolingConnectionPort,
    transport_factory: TransportFactory,
    settings: RtrSettings = app_settings,
    configure_root_logging: bool = True,
) -> TestRunManager:
    if configure_root_logging:
        configure_logging(settings.RTR_LOG_LEVEL)
    if settings.RTR_LOG_LEVEL.upper() == "DEBUG":
        settings.print_settings(logger)  # Print settings for debugging

    config = TestRunManagerConfig.from_app_settings(settings)
    retry_adapter = TenacityRetryAdapter(
        attempts=config.submit_max_retries,
        wait_initial=config.submit_retry_base_wait,
        wait_max=config.submit_retry_max_wait,
    )
    logger.debug(
        f"[main:wire] poll_interval={config.coordinator.poll_interval}s "
        f"wait_timeout={config.coordinator.wait_timeout}s submit_retries={config.submit_max_retries}"
    )
    return TestRunManager(
        connection=connection,
        transport_factory=transport_factory,
        config=config,
        retry_port=retry_adapter,
    )
