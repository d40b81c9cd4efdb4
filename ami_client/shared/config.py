"""
MODULE OVERVIEW:
This module provides client-wide configuration using Pydantic Settings.

WHAT IS HAPPENING HERE:
Connection coordinates, credentials and the reconnect delay live here instead of being
hardcoded in the Manager or the CLI. Every value can be overridden with an `AMI_`
prefixed environment variable or a `.env` file, e.g. `AMI_PORT=5039`.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    HOST: str = "127.0.0.1"
    PORT: int = 5038
    USERNAME: str = ""
    SECRET: str = ""

    # Ask the server to stream events after login (`Events: on`)
    EVENTS: bool = True

    # Delay between a `close` and the next connect + login attempt
    RECONNECT_TIMEOUT_MS: int = 5000

    # Upper bound for the TCP handshake itself
    CONNECT_TIMEOUT_S: float = 10.0

    LOG_LEVEL: str = "INFO"

    class Config:
        env_prefix = "AMI_"
        env_file = ".env"
        # Tolerate missing env vars to allow easy out-of-the-box execution
        env_file_encoding = 'utf-8'
        extra = 'ignore'


settings = Settings()
