"""
Categorized logging for the player backend.

Modules log through ``logging.getLogger(__name__)``; this module groups
those loggers into named categories whose levels can be changed at
runtime and persist in the ``config`` table.
"""
import logging
from typing import Dict
from pathlib import Path
from logging.handlers import TimedRotatingFileHandler


class LoggerCategory:
    """Named categories for application loggers"""
    CORE = "core"                  # Context, managers, link resolution
    API = "api"                    # Platform API client
    NETWORK = "network"            # HTTP client and the local audio proxy
    DOWNLOAD = "download"          # Song downloads, theme images
    DATABASE = "database"          # Library store
    AUTH = "auth"                  # Login, credential persistence


DEFAULT_LOG_LEVELS = {
    LoggerCategory.CORE: logging.INFO,
    LoggerCategory.API: logging.INFO,
    LoggerCategory.NETWORK: logging.INFO,
    LoggerCategory.DOWNLOAD: logging.INFO,
    LoggerCategory.DATABASE: logging.WARNING,
    LoggerCategory.AUTH: logging.INFO,
}


MODULE_TO_CATEGORY = {
    # Core
    'halfbeat.core.context': LoggerCategory.CORE,
    'halfbeat.core.link_resolver': LoggerCategory.CORE,
    'halfbeat.core.search_manager': LoggerCategory.CORE,
    'halfbeat.core.play_history': LoggerCategory.CORE,

    # API
    'halfbeat.core.api': LoggerCategory.API,
    'halfbeat.core.api.base': LoggerCategory.API,
    'halfbeat.core.api.bilibili': LoggerCategory.API,

    # Network
    'halfbeat.core.http_client': LoggerCategory.NETWORK,
    'halfbeat.core.audio_proxy': LoggerCategory.NETWORK,

    # Download
    'halfbeat.core.download_manager': LoggerCategory.DOWNLOAD,
    'halfbeat.core.theme_images': LoggerCategory.DOWNLOAD,
    'halfbeat.utils.file_utils': LoggerCategory.DOWNLOAD,

    # Database
    'halfbeat.core.database': LoggerCategory.DATABASE,

    # Auth
    'halfbeat.core.credentials': LoggerCategory.AUTH,
    'halfbeat.core.account_manager': LoggerCategory.AUTH,
}

LOG_FILE_NAME = "half_beat.log"


class LoggingManager:
    """Manages application-wide logging configuration"""

    def __init__(self, log_dir: Path, db_manager=None):
        """
        Initialize logging manager.

        Args:
            log_dir: Directory for log files
            db_manager: Database manager for persistent configuration
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.db_manager = db_manager
        self._category_levels: Dict[str, int] = {}
        self._load_levels_from_db()

    def _load_levels_from_db(self):
        if not self.db_manager:
            self._category_levels = DEFAULT_LOG_LEVELS.copy()
            return

        for category, default_level in DEFAULT_LOG_LEVELS.items():
            config_key = f'log_level_{category}'
            level_name = self.db_manager.get_config(config_key, logging.getLevelName(default_level))
            level = logging.getLevelName(str(level_name).upper())
            self._category_levels[category] = level if isinstance(level, int) else default_level

    def get_category_level(self, category: str) -> int:
        return self._category_levels.get(category, logging.INFO)

    def set_category_level(self, category: str, level: int):
        """Set log level for a category and persist it"""
        if category not in DEFAULT_LOG_LEVELS:
            raise ValueError(f"Unknown logger category: {category}")
        self._category_levels[category] = level
        if self.db_manager:
            self.db_manager.set_config(f'log_level_{category}', logging.getLevelName(level))
        self._apply_category_level(category, level)

    def _apply_category_level(self, category: str, level: int):
        for module_name, cat in MODULE_TO_CATEGORY.items():
            if cat == category:
                logging.getLogger(module_name).setLevel(level)

    def setup_logging(self, root_level: int = logging.INFO):
        """
        Install file and console handlers and apply category levels.

        Args:
            root_level: Root logger level (default: INFO)
        """
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        file_handler = TimedRotatingFileHandler(
            self.log_dir / LOG_FILE_NAME,
            when="midnight",
            interval=1,
            backupCount=7,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)

        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)

        root_logger = logging.getLogger()
        root_logger.setLevel(root_level)
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()
        root_logger.addHandler(file_handler)
        root_logger.addHandler(stream_handler)

        for category, level in self._category_levels.items():
            self._apply_category_level(category, level)

        # Silence noisy third-party loggers
        logging.getLogger('urllib3').setLevel(logging.WARNING)
        logging.getLogger('requests').setLevel(logging.WARNING)
        logging.getLogger('aiohttp').setLevel(logging.WARNING)
        logging.getLogger('asyncio').setLevel(logging.WARNING)

    def get_all_levels(self) -> Dict[str, int]:
        return self._category_levels.copy()
