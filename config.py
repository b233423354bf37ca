"""Configuration management for the CalDAV tasks application."""

import os
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any


MIN_SECRET_LENGTH = 32


@dataclass
class SessionConfig:
    """Signed session cookie configuration."""
    secret_key: str = ""
    cookie_name: str = "session"
    max_age_seconds: int = 60 * 60 * 24 * 7  # one week
    secure: bool = False

    def __post_init__(self):
        """Validate configuration."""
        if len(self.secret_key) < MIN_SECRET_LENGTH:
            raise ValueError(
                f"Session secret must be at least {MIN_SECRET_LENGTH} characters (set SESSION_PASSWORD)"
            )
        if self.max_age_seconds <= 0:
            raise ValueError("Session max age must be positive")


@dataclass
class CalDAVConfig:
    """Outgoing CalDAV client configuration."""
    timeout: int = 30
    product_id: str = "-//CalDAV Tasks//caldav_tasks//EN"

    def __post_init__(self):
        if self.timeout <= 0:
            raise ValueError("CalDAV timeout must be positive")


@dataclass
class ServerConfig:
    """HTTP server configuration."""
    host: str = "0.0.0.0"
    port: int = 3000
    debug: bool = False


@dataclass
class SyncConfig:
    """Task list refresh configuration."""
    cache_max_age_minutes: int = 5

    @property
    def cache_max_age_seconds(self) -> int:
        return self.cache_max_age_minutes * 60


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = None
    max_bytes: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5


@dataclass
class Config:
    """Main application configuration."""
    session: SessionConfig
    caldav: CalDAVConfig = field(default_factory=CalDAVConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> 'Config':
        """Create configuration from environment variables."""
        session_config = SessionConfig(
            secret_key=os.getenv('SESSION_PASSWORD', ''),
            cookie_name=os.getenv('SESSION_COOKIE_NAME', 'session'),
            max_age_seconds=int(os.getenv('SESSION_MAX_AGE', str(SessionConfig.max_age_seconds))),
            secure=os.getenv('SESSION_SECURE', '').lower() in ('true', '1', 'yes')
        )

        caldav_config = CalDAVConfig(
            timeout=int(os.getenv('CALDAV_TIMEOUT', '30')),
            product_id=os.getenv('CALDAV_PRODUCT_ID', CalDAVConfig.product_id)
        )

        server_config = ServerConfig(
            host=os.getenv('SERVER_HOST', '0.0.0.0'),
            port=int(os.getenv('SERVER_PORT', '3000')),
            debug=os.getenv('SERVER_DEBUG', '').lower() in ('true', '1', 'yes')
        )

        sync_config = SyncConfig(
            cache_max_age_minutes=int(os.getenv('SYNC_CACHE_MAX_AGE', '5'))
        )

        logging_config = LoggingConfig(
            level=os.getenv('LOG_LEVEL', 'INFO').upper(),
            format=os.getenv('LOG_FORMAT', LoggingConfig.format),
            file_path=os.getenv('LOG_FILE'),
            max_bytes=int(os.getenv('LOG_MAX_BYTES', str(LoggingConfig.max_bytes))),
            backup_count=int(os.getenv('LOG_BACKUP_COUNT', str(LoggingConfig.backup_count)))
        )

        return cls(
            session=session_config,
            caldav=caldav_config,
            server=server_config,
            sync=sync_config,
            logging=logging_config
        )

    @classmethod
    def from_file(cls, config_path: str) -> 'Config':
        """Create configuration from JSON file."""
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)

            session_data = data.get('session', {})
            session_config = SessionConfig(
                # The secret may stay out of the file and come from the environment
                secret_key=session_data.get('secret_key') or os.getenv('SESSION_PASSWORD', ''),
                cookie_name=session_data.get('cookie_name', 'session'),
                max_age_seconds=session_data.get('max_age_seconds', SessionConfig.max_age_seconds),
                secure=session_data.get('secure', False)
            )

            caldav_data = data.get('caldav', {})
            caldav_config = CalDAVConfig(
                timeout=caldav_data.get('timeout', 30),
                product_id=caldav_data.get('product_id', CalDAVConfig.product_id)
            )

            server_data = data.get('server', {})
            server_config = ServerConfig(
                host=server_data.get('host', '0.0.0.0'),
                port=server_data.get('port', 3000),
                debug=server_data.get('debug', False)
            )

            sync_data = data.get('sync', {})
            sync_config = SyncConfig(
                cache_max_age_minutes=sync_data.get('cache_max_age_minutes', 5)
            )

            logging_data = data.get('logging', {})
            logging_config = LoggingConfig(
                level=logging_data.get('level', 'INFO').upper(),
                format=logging_data.get('format', LoggingConfig.format),
                file_path=logging_data.get('file_path'),
                max_bytes=logging_data.get('max_bytes', LoggingConfig.max_bytes),
                backup_count=logging_data.get('backup_count', LoggingConfig.backup_count)
            )

            return cls(
                session=session_config,
                caldav=caldav_config,
                server=server_config,
                sync=sync_config,
                logging=logging_config
            )

        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Invalid configuration file format: {e}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary, leaving out the session secret."""
        return {
            'session': {
                'cookie_name': self.session.cookie_name,
                'max_age_seconds': self.session.max_age_seconds,
                'secure': self.session.secure
            },
            'caldav': {
                'timeout': self.caldav.timeout,
                'product_id': self.caldav.product_id
            },
            'server': {
                'host': self.server.host,
                'port': self.server.port,
                'debug': self.server.debug
            },
            'sync': {
                'cache_max_age_minutes': self.sync.cache_max_age_minutes
            },
            'logging': {
                'level': self.logging.level,
                'format': self.logging.format,
                'file_path': self.logging.file_path,
                'max_bytes': self.logging.max_bytes,
                'backup_count': self.logging.backup_count
            }
        }

    def setup_logging(self) -> None:
        """Configure logging based on configuration."""
        log_level = getattr(logging, self.logging.level, logging.INFO)

        formatter = logging.Formatter(self.logging.format)

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)

        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        if self.logging.file_path:
            from logging.handlers import RotatingFileHandler
            file_handler = RotatingFileHandler(
                self.logging.file_path,
                maxBytes=self.logging.max_bytes,
                backupCount=self.logging.backup_count,
                encoding='utf-8'
            )
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)


def load_config() -> Config:
    """Load configuration from file or environment variables."""
    config_files = [
        'config.json',
        'config/config.json',
        '/etc/caldav-tasks/config.json'
    ]

    for config_file in config_files:
        if os.path.exists(config_file):
            try:
                return Config.from_file(config_file)
            except (OSError, ValueError) as e:
                logging.warning(f"Failed to load config from {config_file}: {e}")

    return Config.from_env()
