# 客户端配置: 数据目录、超时、TLS 策略
import logging
import sys
from functools import lru_cache
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_app_data_path(app_name: str = "ArtifactKeeper") -> Path:
    home = Path.home()

    if sys.platform == "win32":
        # Windows: C:\Users\Name\AppData\Roaming\ArtifactKeeper
        return home / "AppData" / "Roaming" / app_name
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / app_name
    # Linux: /home/name/.local/share/ArtifactKeeper
    return home / ".local" / "share" / app_name


class Settings(BaseSettings):
    # --- 基础配置 ---
    APP_NAME: str = "ArtifactKeeper"
    DATA_DIR: Path = get_app_data_path()

    # --- 网络配置 (秒) ---
    REQUEST_TIMEOUT: float = 30.0
    # 连接探测有独立的短超时
    PROBE_TIMEOUT: float = 10.0

    # 自托管部署常用自签名证书; 关闭后恢复正常的 CA 校验
    ALLOW_SELF_SIGNED: bool = True

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="AKCLIENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str | None = None):
    logging.basicConfig(
        level=(level or get_settings().LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
