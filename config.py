"""
Configuration module for the Midtrans Payment Backend service.

Loads settings from environment variables with sensible defaults into
immutable dataclasses. The resulting Config is built once by the entry
point and handed to each component explicitly.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv


SANDBOX_SNAP_URL = 'https://app.sandbox.midtrans.com/snap/v1'
PRODUCTION_SNAP_URL = 'https://app.midtrans.com/snap/v1'
SANDBOX_CORE_API_URL = 'https://api.sandbox.midtrans.com/v2'
PRODUCTION_CORE_API_URL = 'https://api.midtrans.com/v2'


def _env_flag(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class MidtransConfig:
    """Midtrans gateway credentials and client settings."""
    server_key: str
    client_key: str
    is_production: bool = False
    timeout: int = 30
    verify_with_gateway: bool = False

    @property
    def snap_url(self) -> str:
        return PRODUCTION_SNAP_URL if self.is_production else SANDBOX_SNAP_URL

    @property
    def core_api_url(self) -> str:
        return PRODUCTION_CORE_API_URL if self.is_production else SANDBOX_CORE_API_URL


@dataclass(frozen=True)
class CallbackConfig:
    """Merchant front-end URLs used for Snap redirect callbacks."""
    base_url: str

    @property
    def finish_url(self) -> str:
        return f"{self.base_url}/payment-success"

    @property
    def error_url(self) -> str:
        return f"{self.base_url}/payment-error"

    @property
    def pending_url(self) -> str:
        return f"{self.base_url}/payment-pending"


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration."""
    url: str


@dataclass(frozen=True)
class APIConfig:
    """API server configuration."""
    host: str
    port: int


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""
    level: str
    file: Optional[str]


@dataclass(frozen=True)
class ServiceConfig:
    """Service-level configuration."""
    name: str
    environment: str

    @property
    def is_production(self) -> bool:
        return self.environment == 'production'


@dataclass(frozen=True)
class Config:
    """
    Aggregates all config sections.

    Usage:
        from config import Config

        config = Config.from_env()
        print(config.midtrans.snap_url)
        print(config.api.port)
    """

    midtrans: MidtransConfig
    callbacks: CallbackConfig
    database: DatabaseConfig = field(
        default_factory=lambda: DatabaseConfig(url='sqlite:///./payments.db')
    )
    api: APIConfig = field(default_factory=lambda: APIConfig(host='0.0.0.0', port=3000))
    logging: LoggingConfig = field(default_factory=lambda: LoggingConfig(level='INFO', file=None))
    service: ServiceConfig = field(
        default_factory=lambda: ServiceConfig(name='MidtransPaymentBackend', environment='development')
    )

    @classmethod
    def from_env(cls, dotenv: bool = True) -> 'Config':
        """
        Load all configuration from environment variables.

        Args:
            dotenv: Whether to read a .env file first

        Returns:
            Config instance
        """
        if dotenv:
            load_dotenv()

        environment = os.getenv('APP_ENV') or os.getenv('NODE_ENV') or 'development'

        return cls(
            midtrans=MidtransConfig(
                server_key=os.getenv('MIDTRANS_SERVER_KEY', ''),
                client_key=os.getenv('MIDTRANS_CLIENT_KEY', ''),
                is_production=environment == 'production',
                timeout=int(os.getenv('MIDTRANS_TIMEOUT', '30')),
                verify_with_gateway=_env_flag('MIDTRANS_VERIFY_WITH_GATEWAY')
            ),
            callbacks=CallbackConfig(
                base_url=os.getenv('BASE_URL', '').rstrip('/')
            ),
            database=DatabaseConfig(
                url=os.getenv('DATABASE_URL', 'sqlite:///./payments.db')
            ),
            api=APIConfig(
                host=os.getenv('API_HOST', '0.0.0.0'),
                port=int(os.getenv('PORT', '3000'))
            ),
            logging=LoggingConfig(
                level=os.getenv('LOG_LEVEL', 'INFO'),
                file=os.getenv('LOG_FILE')
            ),
            service=ServiceConfig(
                name=os.getenv('SERVICE_NAME', 'MidtransPaymentBackend'),
                environment=environment
            )
        )

    def validate(self) -> List[str]:
        """
        Validate required configuration values.

        Returns:
            List of validation error messages (empty if all valid)
        """
        errors = []

        if not self.midtrans.server_key:
            errors.append("MIDTRANS_SERVER_KEY is required")

        if not self.midtrans.client_key:
            errors.append("MIDTRANS_CLIENT_KEY is required")

        if not self.callbacks.base_url:
            errors.append("BASE_URL is required")

        if not self.database.url:
            errors.append("DATABASE_URL is required")

        return errors

    def is_valid(self) -> bool:
        """Check if configuration is valid."""
        return len(self.validate()) == 0
