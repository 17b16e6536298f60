from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix='FILESERVE_', env_file='.env', env_file_encoding='utf-8', frozen=True)

    app_name: str = 'fileserve'
    app_host: str = '0.0.0.0'
    app_port: int = Field(default=4443, ge=1, le=65535)
    files_root: str = './files'
    upload_max_bytes: int = Field(default=10 * 1024 * 1024, ge=1)
    tls_cert_file: Optional[str] = None
    tls_key_file: Optional[str] = None
    log_level: str = 'info'
    log_json: bool = False

    @property
    def tls_enabled(self) -> bool:
        return bool(self.tls_cert_file and self.tls_key_file)


@lru_cache
def get_settings() -> Settings:
    return Settings()
