# /core/config.py
from decimal import Decimal
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

class Settings(BaseSettings):
    DATABASE_URL: str
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    ADMIN_USERNAME: str | None = None
    ADMIN_PASSWORD: str | None = None
    # 预约最长时长（分钟）
    MAX_RESERVATION_MINUTES: int = 120
    # 预约占位费 = 小时费率 * 小时数 * 比例
    RESERVATION_FEE_RATIO: Decimal = Decimal("0.2")
    # 0 表示不启动过期预约清理任务
    EXPIRY_SWEEP_INTERVAL_SECONDS: int = 60
    LOG_LEVEL: str = "INFO"
    CORS_ALLOW_ORIGINS: str = "http://localhost:5173,http://127.0.0.1:5173"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
