import json
import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from study_importer.config.settings import settings
from study_importer.domain.exceptions import SettingsParseError
from study_importer.domain.repositories import ISettingsRepository
from study_importer.domain.settings_models import UserSettings, default_configuration
from study_importer.infrastructure.task_queue import SerialTaskQueue


logger = logging.getLogger(__name__)


def _deep_merge(base: dict, override: dict) -> dict:
    """Рекурсивно наложить override на base, возвращает новый словарь"""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class JsonSettingsRepository(ISettingsRepository):
    """
    Хранилище пользовательских настроек в JSON файле.

    Прочитанные настройки кэшируются до вызова reload(). Изменения
    (apply_settings) выполняются через очередь с одним исполнителем:
    циклы чтение-изменение-запись не пересекаются.
    """

    def __init__(self, app_home: Optional[str] = None,
                 file_name: Optional[str] = None):
        self.app_home = Path(app_home or settings.APP_HOME)
        self.file_path = self.app_home / (file_name or settings.SETTINGS_FILE_NAME)
        self._cache: Optional[UserSettings] = None
        self._lock = threading.RLock()
        self._queue = SerialTaskQueue('settings-writer')

    def load(self) -> UserSettings:
        """Прочитать файл настроек. Если файла нет - записать настройки по умолчанию"""
        with self._lock:
            if not self.file_path.exists():
                logger.info("Создание нового файла настроек %s", self.file_path)
                self._cache = self.write_settings(default_configuration())
                return self._cache

            logger.info("Чтение файла настроек %s", self.file_path)
            data = self.file_path.read_text(encoding='utf-8')
            try:
                self._cache = UserSettings.model_validate(json.loads(data))
            except (json.JSONDecodeError, ValidationError) as e:
                raise SettingsParseError(
                    f"Unable to parse settings file '{self.file_path}': {e}"
                ) from e
            return self._cache

    def reload(self) -> UserSettings:
        with self._lock:
            self._cache = None
            return self.load()

    def read_settings(self) -> UserSettings:
        """Получить настройки (из кэша, если они уже прочитаны)"""
        with self._lock:
            if self._cache is None:
                return self.load()
            return self._cache

    def write_settings(self, user_settings: UserSettings) -> UserSettings:
        """Записать настройки в файл"""
        logger.info("Запись файла настроек %s", self.file_path)
        with self._lock:
            self.app_home.mkdir(parents=True, exist_ok=True)
            self.file_path.write_text(user_settings.to_json(), encoding='utf-8')
            self._cache = user_settings
        return user_settings

    def _apply(self, to_apply: UserSettings) -> UserSettings:
        current = self.read_settings()
        merged = _deep_merge(
            current.model_dump(exclude_none=True),
            to_apply.model_dump(exclude_none=True),
        )
        logger.info("Применение настроек")
        return self.write_settings(UserSettings.model_validate(merged))

    def apply_settings_async(self, to_apply: UserSettings):
        """Поставить изменение настроек в очередь, возвращает Future"""
        return self._queue.enqueue(lambda: self._apply(to_apply))

    def apply_settings(self, to_apply: UserSettings) -> UserSettings:
        """
        Наложить все заданные (не None) поля to_apply на сохраненные
        настройки и записать результат. Вызовы обслуживаются по очереди.
        """
        return self.apply_settings_async(to_apply).result()
