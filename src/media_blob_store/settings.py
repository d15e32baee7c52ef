from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    base_path: Path = Field(default=Path("./media_store"), alias="MEDIA_BASE_PATH")
    max_file_size_bytes: int = Field(
        default=10 * 1024 * 1024,
        gt=0,
        alias="MEDIA_MAX_FILE_SIZE_BYTES",
    )
    chunk_size: int = Field(default=64 * 1024, gt=0, alias="MEDIA_CHUNK_SIZE")
    fsync: bool = Field(default=False, alias="MEDIA_FSYNC")
    verify_staged_hash: bool = Field(default=False, alias="MEDIA_VERIFY_STAGED_HASH")
    debug: bool = Field(default=False, alias="MEDIA_STORE_DEBUG")

    @model_validator(mode="after")
    def normalize_paths(self) -> "StoreSettings":
        self.base_path = self.base_path.expanduser().absolute()
        return self
