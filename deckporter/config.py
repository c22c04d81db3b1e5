"""Connection and path settings.

Values are resolved in this order: command-line flag, process environment
(after loading .env.local and .env), user config file, built-in default.
"""

import getpass
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Config file location
CONFIG_PATH = Path.home() / ".deckporter" / "config"

DEFAULT_USER = 'test_admin'
DEFAULT_HOST = 'localhost'
DEFAULT_PROTOCOL = 'http'

# TEST_TARGET_ENV -> (protocol, port)
TARGET_ENVIRONMENTS = {
    'development': ('http', 4000),
    'test': ('http', 5000),
    'production': ('https', None),
}

NO_PORT = 'none'


def load_env_files(directory='.'):
    """Load .env.local then .env into os.environ without overriding."""
    directory = Path(directory)
    load_dotenv(directory / '.env.local', override=False)
    load_dotenv(directory / '.env', override=False)


def load_user_config(path=None):
    """Load configuration from the user config file (~/.deckporter/config).

    Returns:
        dict: Configuration dictionary with keys like 'ADMIN_PASSWORD'
    """
    path = Path(path) if path else CONFIG_PATH
    config = {}

    if path.exists():
        try:
            with open(path, 'r', encoding='utf-8') as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith('#') and '=' in line:
                        key, value = line.split('=', 1)
                        config[key.strip()] = value.strip()
        except OSError as e:
            print(f"Warning: Failed to load config from {path}: {e}", file=sys.stderr)

    return config


def prompt_password(user, host):
    """Prompt for the sign-in password of user on host.

    Returns:
        str: The password entered
    """
    password = getpass.getpass(f"Password for {user} on {host}: ")
    if not password:
        raise SystemExit("Error: Password cannot be empty")
    return password


def resolve_endpoint(target_env=None, protocol=None, host=None, port=None):
    """Work out (protocol, host, port) for the API.

    Args:
        target_env: development | test | production | None
        protocol: Explicit protocol, overrides target_env
        host: Host name (default: localhost)
        port: Explicit port; 'none' means no port at all

    Returns:
        tuple: (protocol, host, port) where port is an int, a str or None
    """
    env_protocol, env_port = TARGET_ENVIRONMENTS.get(target_env, (DEFAULT_PROTOCOL, None))

    if port is not None and str(port).lower() == NO_PORT:
        resolved_port = None
    else:
        resolved_port = port if port not in (None, '') else env_port

    return protocol or env_protocol, host or DEFAULT_HOST, resolved_port


def build_api_url(protocol, host, port=None):
    """Base URL of the REST API, e.g. http://localhost:4000/api"""
    port_part = f":{port}" if port not in (None, '') else ''
    return f"{protocol}://{host}{port_part}/api"


@dataclass
class Settings:
    """Everything a command needs to reach the API and the local files."""

    top_path: Path
    data_path: Path
    log_path: Path
    user: str
    password: Optional[str]
    protocol: str
    host: str
    port: Optional[str]
    api_url: str
    owner: Optional[str] = None
    test_auto: Optional[str] = None
    deadline: Optional[float] = None
    verbose: bool = False

    @classmethod
    def from_namespace(cls, args, environ=None, user_config=None):
        """Create settings from argparse.Namespace, environment and config file.

        Args:
            args: Parsed command-line arguments
            environ: Environment mapping (default: os.environ)
            user_config: Parsed user config (default: load_user_config())
        """
        environ = os.environ if environ is None else environ
        user_config = load_user_config() if user_config is None else user_config

        def lookup(flag, key, default=None):
            value = getattr(args, flag, None)
            if value not in (None, ''):
                return value
            return environ.get(key) or user_config.get(key) or default

        top_path = Path(getattr(args, 'path', None) or '.')
        log_path = top_path / 'logs'
        if getattr(args, 'log_dir', None):
            log_path = log_path / args.log_dir

        protocol, host, port = resolve_endpoint(
            target_env=lookup('target_env', 'TEST_TARGET_ENV'),
            protocol=getattr(args, 'protocol', None),
            host=lookup('host', 'HOST_OVERRIDE'),
            port=getattr(args, 'port', None),
        )

        return cls(
            top_path=top_path,
            data_path=top_path / 'data',
            log_path=log_path,
            user=lookup('user', 'DECKPORTER_USER', DEFAULT_USER),
            password=lookup('password', 'ADMIN_PASSWORD'),
            protocol=protocol,
            host=host,
            port=port,
            api_url=build_api_url(protocol, host, port),
            owner=getattr(args, 'owner', None),
            test_auto=getattr(args, 'test_auto', None),
            deadline=getattr(args, 'deadline', None),
            verbose=bool(getattr(args, 'verbose', False)),
        )
