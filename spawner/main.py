"""Spawner Service - gRPC server entry point."""

import asyncio
import logging
import sys

import grpc

from . import __version__
from .cloud.cloud_provider_manager import CloudProviderManager, create_registry
from .config import Config
from .core_utils import LoggingUtility, ServiceContext
from .credentials import SecretsManagerStore
from .handlers import ServiceHandlers
from .rpc import SpawnerServicer


def build_manager(service: ServiceContext) -> CloudProviderManager:
    """Wire the secret store, provider registry and service handlers together."""
    store = SecretsManagerStore(service.config)
    registry = create_registry(store)
    return CloudProviderManager(registry, ServiceHandlers(store))


async def main(config: Config = None):
    """Run the spawner gRPC server until it is terminated."""
    config = config or Config.from_env()
    logging.basicConfig(level=config.log_level)

    service = ServiceContext(config=config)
    servicer = SpawnerServicer(service, build_manager(service))

    server = grpc.aio.server()
    server.add_generic_rpc_handlers((servicer.generic_handler(),))
    listen_addr = f"[::]:{config.grpc_port}"
    server.add_insecure_port(listen_addr)

    service.logger.log_info(
        "server", "starting", version=__version__, addr=listen_addr, env=config.env
    )
    await server.start()
    try:
        await server.wait_for_termination()
    finally:
        await server.stop(grace=5)


def run_server():
    """Entry point for the spawner service."""
    logger = LoggingUtility()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.log_info("server", "Server stopped by user")
    except Exception as e:
        logger.log_error("server", e)
        sys.exit(1)


if __name__ == "__main__":
    run_server()
