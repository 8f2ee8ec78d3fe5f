"""
描述: TaskLoad 提醒服务全局配置加载器
主要功能:
    - 统一管理应用配置 (Settings)
    - 支持 YAML 文件加载与环境变量覆盖 (Env Override)
    - 提供 Pydantic 类型校验
"""

from __future__ import annotations

import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from taskload.utils.exceptions import ConfigError


_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


# region 配置模型定义
class ServerSettings(BaseModel):
    """HTTP 服务配置（健康检查与指标）"""
    host: str = "0.0.0.0"
    port: int = 5000


class LoggingSettings(BaseModel):
    """日志系统配置"""
    level: str = "INFO"
    format: Literal["json", "text"] = "json"


class ReminderSettings(BaseModel):
    """提醒分发配置"""
    enabled: bool = True
    interval_seconds: float = 300.0
    """轮询间隔（秒），默认 5 分钟"""

    run_on_start: bool = False
    """启动后是否立即执行一轮"""

    timezone: str = "UTC"
    """计算"明天"窗口所用的时区"""

    max_concurrency: int = 1
    send_timeout_seconds: float = 30.0
    batch_limit: int | None = None
    kinds: list[Literal["deadline", "instant"]] = Field(default_factory=lambda: ["deadline", "instant"])

    @field_validator("interval_seconds", "send_timeout_seconds")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be > 0")
        return value

    @field_validator("max_concurrency")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value}") from exc
        return value

    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class SQLiteSettings(BaseModel):
    path: str = "data/taskload.sqlite3"


class PostgresSettings(BaseModel):
    """PostgreSQL 数据库配置"""
    dsn: str = ""
    min_size: int = 1
    max_size: int = 5
    timeout: int = 10


class StoreSettings(BaseModel):
    """提醒候选存储配置"""
    backend: Literal["sqlite", "postgres", "memory"] = "sqlite"
    sqlite: SQLiteSettings = Field(default_factory=SQLiteSettings)
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)


class EmailSettings(BaseModel):
    """SMTP 邮件通道配置"""
    host: str = "smtp.gmail.com"
    port: int = 587
    username: str = ""
    password: str = ""
    from_address: str = ""
    use_tls: bool = True
    use_ssl: bool = False
    timeout_seconds: float = 20.0

    @property
    def sender(self) -> str:
        return self.from_address or self.username


class WebhookSettings(BaseModel):
    """HTTP Webhook 通道配置"""
    url: str = ""
    api_key: str = ""
    timeout_seconds: float = 10.0


class TransportSettings(BaseModel):
    """通知通道配置"""
    kind: Literal["smtp", "webhook", "log"] = "smtp"
    email: EmailSettings = Field(default_factory=EmailSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)


class Settings(BaseModel):
    """TaskLoad 提醒服务配置聚合根"""
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    reminders: ReminderSettings = Field(default_factory=ReminderSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    transport: TransportSettings = Field(default_factory=TransportSettings)
# endregion


# region 配置加载逻辑
def _expand_env(value: Any) -> Any:
    if isinstance(value, str):
        def replace(match: re.Match[str]) -> str:
            expr = match.group(1)
            if ":-" in expr:
                key, default = expr.split(":-", 1)
                return os.getenv(key, default)
            return os.getenv(expr, "")

        return _ENV_PATTERN.sub(replace, value)
    if isinstance(value, list):
        return [_expand_env(item) for item in value]
    if isinstance(value, dict):
        return {key: _expand_env(val) for key, val in value.items()}
    return value


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping: {path}")
    return _expand_env(data)


def _set_nested(data: dict[str, Any], keys: list[str], value: Any) -> None:
    current = data
    for key in keys[:-1]:
        current = current.setdefault(key, {})
    current[keys[-1]] = value


def _parse_env_override(env_key: str, env_value: str) -> Any:
    if env_key == "REMINDER_KINDS":
        return [item.strip() for item in env_value.split(",") if item.strip()]
    return env_value


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    mapping = {
        "PORT": ["server", "port"],
        "LOG_LEVEL": ["logging", "level"],
        "LOG_FORMAT": ["logging", "format"],
        "REMINDER_ENABLED": ["reminders", "enabled"],
        "REMINDER_INTERVAL_SECONDS": ["reminders", "interval_seconds"],
        "REMINDER_RUN_ON_START": ["reminders", "run_on_start"],
        "REMINDER_TIMEZONE": ["reminders", "timezone"],
        "REMINDER_MAX_CONCURRENCY": ["reminders", "max_concurrency"],
        "REMINDER_SEND_TIMEOUT_SECONDS": ["reminders", "send_timeout_seconds"],
        "REMINDER_BATCH_LIMIT": ["reminders", "batch_limit"],
        "REMINDER_KINDS": ["reminders", "kinds"],
        "STORE_BACKEND": ["store", "backend"],
        "SQLITE_PATH": ["store", "sqlite", "path"],
        "DATABASE_URL": ["store", "postgres", "dsn"],
        "TRANSPORT_KIND": ["transport", "kind"],
        "EMAIL_HOST": ["transport", "email", "host"],
        "EMAIL_PORT": ["transport", "email", "port"],
        "EMAIL_USER": ["transport", "email", "username"],
        "EMAIL_PASS": ["transport", "email", "password"],
        "EMAIL_FROM": ["transport", "email", "from_address"],
        "NOTIFY_WEBHOOK_URL": ["transport", "webhook", "url"],
        "NOTIFY_API_KEY": ["transport", "webhook", "api_key"],
    }
    for env_key, path in mapping.items():
        env_value = os.getenv(env_key)
        if env_value is not None and env_value != "":
            _set_nested(data, path, _parse_env_override(env_key, env_value))
    return data


def load_settings(config_path: str | None = None) -> Settings:
    path = Path(config_path or os.getenv("CONFIG_PATH", "config.yaml"))
    data = _load_yaml(path)
    data = _apply_env_overrides(data)
    try:
        return Settings.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"invalid settings in {path}: {exc}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """获取单例配置对象"""
    return load_settings()
# endregion
