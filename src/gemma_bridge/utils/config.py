"""
Configuration management for Gemma Bridge

Handles loading and validation of configuration from JSON files and environment variables.
"""

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from dotenv import load_dotenv


_SIZE_UNITS = {
    '': 1,
    'K': 1024,
    'M': 1024 ** 2,
    'G': 1024 ** 3,
}


def _default_directory() -> str:
    return os.getenv('GEMMA_DIR', '.')


@dataclass(frozen=True)
class SessionConfig:
    """Where the gemma binary lives and how it is invoked"""
    directory: str = field(default_factory=_default_directory)
    binary: str = "gemma"
    model: str = "2b-it"
    compressed_weights: str = "2b-it-sfp.sbs"
    tokenizer: str = "tokenizer.spm"
    working_directory: Optional[str] = None

    def resolve_path(self, filename: str) -> str:
        """Join a file name onto the configured directory as an absolute path"""
        return os.path.abspath(os.path.join(self.directory, filename.strip()))

    @property
    def binary_path(self) -> str:
        return self.resolve_path(self.binary)

    @property
    def compressed_weights_path(self) -> str:
        return self.resolve_path(self.compressed_weights)

    @property
    def tokenizer_path(self) -> str:
        return self.resolve_path(self.tokenizer)

    @property
    def arguments(self) -> List[str]:
        """Command-line arguments, each flag and value a separate item"""
        return [
            "--model", self.model.strip(),
            "--compressed_weights", self.compressed_weights_path,
            "--tokenizer", self.tokenizer_path,
        ]

    def command(self) -> List[str]:
        """Full argv for the child process"""
        return [self.binary_path, *self.arguments]


@dataclass
class ExchangeConfig:
    """Request/response exchange settings (seconds)"""
    ready_timeout: float = 100.0
    response_timeout: Optional[float] = None
    stream_buffer_limit: int = 64
    shutdown_timeout: float = 5.0
    transcript_file: Optional[str] = "output.txt"


@dataclass(frozen=True)
class MarkerConfig:
    """Literal markers gemma prints on stdout"""
    reading_prompt: Tuple[str, ...] = ("[ Reading prompt ]", "Reading prompt")
    ready: Tuple[str, ...] = (">",)
    progress: Tuple[str, ...] = ("..",)


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: Optional[str] = None
    max_size: str = "10MB"
    backup_count: int = 5

    @property
    def max_bytes(self) -> int:
        """Parse ``max_size`` ("10MB", "512KB", "1048576") into bytes"""
        match = re.fullmatch(r'\s*(\d+(?:\.\d+)?)\s*([KMG]?B?)\s*', self.max_size.upper())
        if not match:
            raise ValueError(f"Invalid log size: {self.max_size!r}")
        number, unit = match.groups()
        return int(float(number) * _SIZE_UNITS[unit.rstrip('B')])


@dataclass
class Config:
    """Main configuration class"""
    session: SessionConfig = field(default_factory=SessionConfig)
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    markers: MarkerConfig = field(default_factory=MarkerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load_from_file(cls, config_path: Path) -> 'Config':
        """Load configuration from JSON file with environment variable override"""
        config_path = Path(config_path)

        # Load environment variables from .env file if it exists
        env_file = config_path.parent / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        with open(config_path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        return cls.from_dict(data)

    @classmethod
    def from_env(cls) -> 'Config':
        """Build configuration from defaults and environment variables only"""
        load_dotenv()
        return cls.from_dict({})

    @classmethod
    def from_dict(cls, data: dict) -> 'Config':
        """Build configuration from a dict; environment variables take precedence"""
        session_data = data.get('session', {})
        exchange_data = data.get('exchange', {})
        marker_data = data.get('markers', {})
        logging_data = data.get('logging', {})

        session_config = SessionConfig(
            directory=os.getenv('GEMMA_DIR', session_data.get('directory', '.')),
            binary=os.getenv('GEMMA_BINARY', session_data.get('binary', 'gemma')),
            model=os.getenv('GEMMA_MODEL', session_data.get('model', '2b-it')),
            compressed_weights=os.getenv(
                'GEMMA_COMPRESSED_WEIGHTS',
                session_data.get('compressed_weights', '2b-it-sfp.sbs')
            ),
            tokenizer=os.getenv('GEMMA_TOKENIZER', session_data.get('tokenizer', 'tokenizer.spm')),
            working_directory=os.getenv('GEMMA_WORKDIR', session_data.get('working_directory')),
        )

        response_timeout = os.getenv('GEMMA_RESPONSE_TIMEOUT', exchange_data.get('response_timeout'))
        exchange_config = ExchangeConfig(
            ready_timeout=float(os.getenv('GEMMA_READY_TIMEOUT', exchange_data.get('ready_timeout', 100.0))),
            response_timeout=float(response_timeout) if response_timeout not in (None, '') else None,
            stream_buffer_limit=int(os.getenv('GEMMA_STREAM_BUFFER', exchange_data.get('stream_buffer_limit', 64))),
            shutdown_timeout=float(os.getenv('GEMMA_SHUTDOWN_TIMEOUT', exchange_data.get('shutdown_timeout', 5.0))),
            transcript_file=os.getenv('GEMMA_TRANSCRIPT', exchange_data.get('transcript_file', 'output.txt')) or None,
        )

        defaults = MarkerConfig()
        marker_config = MarkerConfig(
            reading_prompt=tuple(marker_data.get('reading_prompt', defaults.reading_prompt)),
            ready=tuple(marker_data.get('ready', defaults.ready)),
            progress=tuple(marker_data.get('progress', defaults.progress)),
        )

        logging_config = LoggingConfig(
            level=os.getenv('LOG_LEVEL', logging_data.get('level', 'INFO')),
            file=os.getenv('LOG_FILE', logging_data.get('file')),
            max_size=os.getenv('LOG_MAX_SIZE', logging_data.get('max_size', '10MB')),
            backup_count=int(os.getenv('LOG_BACKUP_COUNT', logging_data.get('backup_count', 5)))
        )

        return cls(
            session=session_config,
            exchange=exchange_config,
            markers=marker_config,
            logging=logging_config
        )

    def validate(self) -> bool:
        """Validate configuration values"""
        errors = []

        # Session validation
        if not self.session.binary.strip():
            errors.append("Gemma binary name is required")

        if not self.session.model.strip():
            errors.append("Model identifier is required")

        if not self.session.compressed_weights.strip():
            errors.append("Compressed weights file is required")

        if not self.session.tokenizer.strip():
            errors.append("Tokenizer file is required")

        # Exchange validation
        if self.exchange.ready_timeout <= 0:
            errors.append("Ready timeout must be positive")

        if self.exchange.response_timeout is not None and self.exchange.response_timeout <= 0:
            errors.append("Response timeout must be positive")

        if self.exchange.stream_buffer_limit <= 0:
            errors.append("Stream buffer limit must be positive")

        if self.exchange.shutdown_timeout <= 0:
            errors.append("Shutdown timeout must be positive")

        # Marker validation
        for name in ('reading_prompt', 'ready', 'progress'):
            markers = getattr(self.markers, name)
            if not markers or any(not marker for marker in markers):
                errors.append(f"Marker '{name}' must contain non-empty strings")

        # Logging validation
        if self.logging.level.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            errors.append(f"Unknown log level: {self.logging.level}")

        try:
            self.logging.max_bytes
        except ValueError as e:
            errors.append(str(e))

        if errors:
            raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

        return True
