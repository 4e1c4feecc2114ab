#!/usr/bin/env python3
"""
Midtrans Payment Backend Service.

Main entry point that wires all components together:
- Database-backed reconciliation sink
- Midtrans gateway client
- Notification processor (webhook state machine)
- Payment REST API

Usage:
    python main.py

Environment variables:
    See .env.example for all configuration options.
"""

import asyncio
import logging
import os
import signal
import sys
from typing import Optional

from aiohttp import web

from config import Config
from database.db import Database
from services.gateway_client import MidtransClient
from services.notification_processor import NotificationProcessor
from services.payment_service import PaymentService
from services.reconciliation import DatabaseReconciliationSink
from api.payment_api import create_app


# Configure logging
def setup_logging(config: Config):
    """Configure logging based on config."""
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    log_level = getattr(logging, config.logging.level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]

    if config.logging.file:
        # Ensure log directory exists
        log_dir = os.path.dirname(config.logging.file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(config.logging.file))

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=handlers
    )

    # Reduce noise from third-party libraries
    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


class PaymentBackendService:
    """
    Main service orchestrator.

    Coordinates all components of the payment backend:
    - Database connection
    - Gateway client
    - Notification processor and reconciliation sink
    - REST API server
    """

    def __init__(self, config: Config):
        self.config = config
        self.db: Optional[Database] = None
        self.gateway: Optional[MidtransClient] = None
        self.processor: Optional[NotificationProcessor] = None
        self.payment_service: Optional[PaymentService] = None
        self.api_app: Optional[web.Application] = None
        self.api_runner: Optional[web.AppRunner] = None
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start all services."""
        config = self.config

        logger.info("=" * 60)
        logger.info(f"Starting {config.service.name}")
        logger.info("=" * 60)

        # Validate configuration
        errors = config.validate()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError("Invalid configuration")

        # Initialize database
        logger.info("Initializing database...")
        self.db = Database(config.database.url)
        await self.db.connect()
        await self.db.init_schema()

        # Initialize services
        logger.info("Initializing services...")

        self.gateway = MidtransClient(config.midtrans)
        await self.gateway.start()

        sink = DatabaseReconciliationSink(self.db)

        self.processor = NotificationProcessor(
            sink=sink,
            server_key=config.midtrans.server_key,
            gateway_client=self.gateway,
            verify_with_gateway=config.midtrans.verify_with_gateway
        )

        self.payment_service = PaymentService(
            gateway=self.gateway,
            sink=sink,
            callbacks=config.callbacks
        )

        # Start API server
        logger.info("Starting API server...")
        self.api_app = create_app(
            payment_service=self.payment_service,
            processor=self.processor,
            service_config=config.service
        )

        self.api_runner = web.AppRunner(self.api_app)
        await self.api_runner.setup()

        site = web.TCPSite(
            self.api_runner,
            config.api.host,
            config.api.port
        )
        await site.start()

        logger.info("=" * 60)
        logger.info("Service started successfully!")
        logger.info(f"API server running at http://{config.api.host}:{config.api.port}")
        logger.info(f"Environment: {config.service.environment}")
        logger.info("=" * 60)

    async def stop(self) -> None:
        """Stop all services gracefully."""
        logger.info("Initiating graceful shutdown...")

        # Stop accepting new requests
        if self.api_runner:
            await self.api_runner.cleanup()

        if self.gateway:
            await self.gateway.stop()

        if self.processor:
            logger.info(f"Notification stats: {self.processor.get_stats()}")

        # Close database
        if self.db:
            await self.db.disconnect()

        logger.info("Shutdown complete")
        self._shutdown_event.set()

    async def run(self) -> None:
        """Run the service until shutdown signal."""
        await self.start()

        # Wait for shutdown signal
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        """Request service shutdown."""
        asyncio.create_task(self.stop())


def handle_signal(service: PaymentBackendService, sig: signal.Signals) -> None:
    """Handle shutdown signals."""
    logger.info(f"Received signal {sig.name}, initiating shutdown...")
    service.request_shutdown()


async def main() -> None:
    """Main entry point."""
    config = Config.from_env()
    setup_logging(config)

    service = PaymentBackendService(config)

    # Set up signal handlers
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda s=sig: handle_signal(service, s)
        )

    try:
        await service.run()
    except Exception as e:
        logger.error(f"Service error: {e}", exc_info=True)
        await service.stop()
        sys.exit(1)


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == '__main__':
    run()
