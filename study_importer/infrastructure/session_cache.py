import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import List, Optional

from study_importer.config.settings import settings
from study_importer.domain.repositories import IArtifactCache


logger = logging.getLogger(__name__)


class SessionArtifactCache(IArtifactCache):
    """Кэш производных файлов (PNG/PDF) в папке сессии пользователя

    Имена файлов детерминированы, поэтому каждый исходный файл
    конвертируется не более одного раза за сессию.
    """

    def __init__(self, app_home: Optional[str] = None,
                 folder_name: Optional[str] = None):
        self.app_home = Path(app_home or settings.APP_HOME)
        self.base_path = self.app_home / (folder_name or settings.SESSION_FOLDER_NAME)

    def session_path(self, create: bool = False) -> str:
        """Получить папку сессии, при необходимости создать ее"""
        if create:
            self._ensure_directory_exists()
        return str(self.base_path)

    def _ensure_directory_exists(self):
        """Создать папку сессии если она не существует"""
        self.base_path.mkdir(parents=True, exist_ok=True)

    def cached_artifact_path(self, series_instance_uid: str,
                             source_file: str, extension: str) -> str:
        """
        Получить путь к производному файлу:
        base_path/{series_instance_uid}-{имя исходного файла}.{extension}
        """
        image_name = Path(str(source_file)).stem
        return str(self.base_path / f"{series_instance_uid}-{image_name}.{extension}")

    def exists(self, path: str) -> bool:
        return os.path.isfile(path)

    def read(self, path: str) -> bytes:
        """Прочитать файл из кэша"""
        logger.info("Чтение файла %s", path)
        with open(path, 'rb') as f:
            return f.read()

    def unique_work_file(self, prefix: str, extension: str) -> str:
        """Уникальное (не зависящее от содержимого) имя рабочего файла"""
        self._ensure_directory_exists()
        return str(self.base_path / f"{prefix}.{uuid.uuid4()}.{extension}")

    def list_artifacts(self) -> List[str]:
        """Получить список файлов в папке сессии"""
        if not self.base_path.is_dir():
            return []
        return sorted(str(item) for item in self.base_path.iterdir() if item.is_file())

    def size(self) -> int:
        """Получить общий размер папки сессии в байтах"""
        total_size = 0
        for root, dirs, files in os.walk(self.base_path):
            for file in files:
                total_size += os.path.getsize(os.path.join(root, file))
        return total_size

    def purge(self) -> int:
        """Удалить папку сессии. Возвращает количество удаленных файлов"""
        if not self.base_path.exists():
            return 0
        count = len(self.list_artifacts())
        shutil.rmtree(self.base_path)
        logger.info("Папка сессии %s удалена", self.base_path)
        return count
