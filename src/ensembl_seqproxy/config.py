"""Configuration management for the Ensembl sequence proxy."""

import json
import os
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import List, Optional

DEFAULT_DOMAIN = "https://rest.ensembl.org"

# model organisms searched when a query is a gene symbol
DEFAULT_SPECIES = [
    "human", "mouse", "rat", "zebrafish", "xenopus_tropicalis",
    "drosophila_melanogaster", "caenorhabditis_elegans", "saccharomyces_cerevisiae",
]


@dataclass
class RestConfig:
    """REST domains, expected versions and timeouts."""
    domain: str = DEFAULT_DOMAIN
    genomes_domain: Optional[str] = None
    expected_rest_version: str = "15.2"
    expected_genomes_rest_version: str = "15.2"
    connect_timeout: float = 10.0
    read_timeout: float = 300.0
    ping_timeout: float = 2.0
    availability_retest_seconds: float = 10.0
    version_retest_seconds: float = 3600.0
    requests_per_second: float = 15.0  # Ensembl's published limit

    @property
    def effective_genomes_domain(self) -> str:
        return self.genomes_domain or self.domain


@dataclass
class RetryConfig:
    """Retry behaviour for rate limiting and connection failures."""
    max_attempts: int = 3
    max_retry_after_seconds: float = 10.0
    connect_retries: int = 2
    backoff_factor: float = 0.5


@dataclass
class FetchConfig:
    """Batching and fan-out settings."""
    max_batch_size: int = 50
    max_workers: int = 1
    species: List[str] = field(default_factory=lambda: list(DEFAULT_SPECIES))


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "WARNING"
    directory: Optional[str] = None
    colors: bool = True
    rotate_logs: bool = True


@dataclass
class Config:
    """Main configuration container."""
    rest: RestConfig
    retry: RetryConfig
    fetch: FetchConfig
    logging: LoggingConfig

    @classmethod
    def default(cls) -> 'Config':
        """Create default configuration."""
        return cls(
            rest=RestConfig(),
            retry=RetryConfig(),
            fetch=FetchConfig(),
            logging=LoggingConfig()
        )

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from JSON file."""
        path = Path(path)
        if not path.exists():
            return cls.default()

        with open(path, 'r') as f:
            data = json.load(f)

        return cls(
            rest=RestConfig(**data.get('rest', {})),
            retry=RetryConfig(**data.get('retry', {})),
            fetch=FetchConfig(**data.get('fetch', {})),
            logging=LoggingConfig(**data.get('logging', {}))
        )

    def to_file(self, path: Path) -> None:
        """Save configuration to JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            'rest': asdict(self.rest),
            'retry': asdict(self.retry),
            'fetch': asdict(self.fetch),
            'logging': asdict(self.logging)
        }

        with open(path, 'w') as f:
            json.dump(data, f, indent=2)

    def merge_env_vars(self) -> None:
        """Merge environment variables into configuration."""
        if os.getenv('ENSEMBL_DOMAIN'):
            self.rest.domain = os.getenv('ENSEMBL_DOMAIN')
        if os.getenv('ENSEMBL_GENOMES_DOMAIN'):
            self.rest.genomes_domain = os.getenv('ENSEMBL_GENOMES_DOMAIN')
        if os.getenv('ENSEMBL_RATE_LIMIT'):
            self.rest.requests_per_second = float(os.getenv('ENSEMBL_RATE_LIMIT'))
        if os.getenv('SEQPROXY_MAX_WORKERS'):
            self.fetch.max_workers = int(os.getenv('SEQPROXY_MAX_WORKERS'))
        if os.getenv('SEQPROXY_LOG_LEVEL'):
            self.logging.level = os.getenv('SEQPROXY_LOG_LEVEL')

    def merge_cli_args(self, **kwargs) -> None:
        """Merge CLI arguments into configuration."""
        if kwargs.get('domain'):
            self.rest.domain = kwargs['domain']
        if kwargs.get('genomes_domain'):
            self.rest.genomes_domain = kwargs['genomes_domain']
        if kwargs.get('read_timeout'):
            self.rest.read_timeout = kwargs['read_timeout']
        if kwargs.get('workers'):
            self.fetch.max_workers = kwargs['workers']
        if kwargs.get('batch_size'):
            self.fetch.max_batch_size = kwargs['batch_size']
        if kwargs.get('species'):
            self.fetch.species = list(kwargs['species'])
        if kwargs.get('log_level'):
            self.logging.level = kwargs['log_level']
        if kwargs.get('log_dir'):
            self.logging.directory = kwargs['log_dir']


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    locations = [
        Path.home() / '.ensembl_seqproxy' / 'config.json',
        Path.home() / '.config' / 'ensembl_seqproxy' / 'config.json',
        Path('.ensembl_seqproxy.json'),
        Path('seqproxy.config.json')
    ]

    for path in locations:
        if path.exists():
            return path

    return Path.home() / '.ensembl_seqproxy' / 'config.json'


def create_example_config(path: Optional[Path] = None) -> Path:
    """Create an example configuration file."""
    if path is None:
        path = Path('seqproxy.config.example.json')

    config = Config.default()
    config.rest.genomes_domain = "https://rest.ensembl.org"
    config.fetch.max_workers = 4
    config.logging.level = "INFO"

    config.to_file(Path(path))
    return Path(path)
