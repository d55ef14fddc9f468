"""
引导加载

Config 需要 Logger 记录加载过程，Logger 又需要 Config 的 logging 段：
先用临时 stderr Logger 加载配置，再按配置重建正式 Handler，最后冻结配置。
"""

import logging
from typing import Optional

from core.config import ConfigManager
from core.logger import create_temporary_logger, reconfigure_logger


def init(config_path: Optional[str] = None) -> tuple[ConfigManager, logging.Logger]:
    """
    Returns:
        (已冻结的 config, agent 根 Logger)

    Raises:
        ConfigError: 配置校验失败
    """
    boot_logger = create_temporary_logger()
    config = ConfigManager(logger=boot_logger).load(config_path=config_path)

    logging_section = config.get("logging", {})
    logger = reconfigure_logger(logging_section)
    logger.info(
        f"{config.get('app.name')} v{config.get('app.version')} [{config.release}] "
        f"日志级别 {logging_section.get('level', 'INFO')}"
    )

    config.freeze()
    return config, logger
