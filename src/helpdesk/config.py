from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = ""
    HELPDESK_API_URL: str = ""
    HELPDESK_API_TOKEN: str = ""
    IMPORT_USER_EMAIL: str = ""  # Empty: first administrator of the account acts for imported messages.
    CONTACT_CHUNK_SIZE: int = 3000
    MESSAGE_CHUNK_SIZE: int = 4000
    CONVERSATION_CREATION: Literal["sql", "api"] = "sql"
    LABEL_COLOR: str = "#2BB32F"
    LABEL_DESCRIPTION: str = "fonte origem do contato"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @field_validator("CONTACT_CHUNK_SIZE", "MESSAGE_CHUNK_SIZE")
    @classmethod
    def _positive_chunk_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("chunk size must be positive")
        return v


settings = Settings()
