"""
Logger Configuration
统一日志配置
"""
import logging
import sys
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler
from rich.console import Console


# 全局 Console 实例
console = Console()

# 日志格式
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_FORMAT_SIMPLE = "%(message)s"


def _log_dir() -> Path:
    from config import get_settings

    return Path(get_settings().log.dir)


def diagnostic_log_path() -> Path:
    """失败任务 completion_reason 中引用的诊断日志路径"""
    from config import get_settings

    return (_log_dir() / get_settings().log.file_name).resolve()


def setup_logger(
    name: Optional[str] = None,
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    use_rich: bool = True,
) -> logging.Logger:
    """
    设置日志记录器

    Args:
        name: 日志记录器名称 (None 为根日志器)
        level: 日志级别
        log_file: 日志文件名 (可选, 写入日志目录)
        use_rich: 是否使用 Rich 美化输出

    Returns:
        配置好的 Logger 实例
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # 避免重复添加 handler
    if logger.handlers:
        return logger

    # Console Handler
    if use_rich:
        console_handler = RichHandler(
            console=console,
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
        )
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT_SIMPLE))
    else:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    # File Handler (可选)
    if log_file:
        log_dir = _log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_dir / log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler.setLevel(level)
        logger.addHandler(file_handler)

    return logger


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """
    按配置初始化根日志器 (控制台 + 诊断日志文件)

    各模块使用 logging.getLogger(__name__)，没有统一的包前缀，
    因此 handler 挂在 Python 根日志器上。
    """
    from config import get_settings

    log_settings = get_settings().log
    resolved = logging.getLevelName((level or log_settings.level).upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    return setup_logger(None, level=resolved, log_file=log_settings.file_name)
