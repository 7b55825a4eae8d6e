"""
配置文件 - 项目配置管理
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """项目配置"""

    # 基础配置
    PROJECT_NAME: str = Field(default="WeChat Pay Native Gateway")
    VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)

    # 挂载前缀
    API_PREFIX: str = Field(default="/api/v1")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
