import os
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


_PACKAGE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Настройки приложения"""

    model_config = SettingsConfigDict(
        env_prefix="STUDY_IMPORTER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Рабочая папка пользователя
    APP_HOME: str = os.path.join(os.path.expanduser("~"), ".study-importer")
    SETTINGS_FILE_NAME: str = "study-importer-settings.json"
    SESSION_FOLDER_NAME: str = "session"
    JOURNAL_FILE_NAME: str = "operations.log"

    # Утилиты DCMTK (пустой путь - поиск через PATH)
    DCMTK_BIN_PATH: str = ""
    PROCESS_TIMEOUT: Optional[float] = 300
    MAX_OUTPUT_SIZE: int = 16 * 1024 * 1024

    # C-FIND worklist. Шаблон не поставляется с пакетом, его кладут в APP_HOME
    QUERY_TEMPLATE_FILE: str = os.path.join(os.path.expanduser("~"), ".study-importer",
                                            "query-worklist-attributes.dcm")
    QUERY_RESULT_FILE_NAME: str = "query-worklist-attributes-result.xml"

    # Заглушка для отсутствующих изображений и документов
    PLACEHOLDER_IMAGE: str = str(_PACKAGE_DIR / "assets" / "icon.png")

    # Таймауты для HTTP запросов
    REQUEST_TIMEOUT: int = 30

    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "study_importer.log"


settings = Settings()
