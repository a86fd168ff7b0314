from abc import ABC, abstractmethod
from typing import List, Optional, Sequence
from study_importer.domain.entities import ProcessResult


class IProcessRunner(ABC):
    """Интерфейс запуска внешних утилит"""

    @abstractmethod
    def run(self, executable: str, args: Sequence[str],
            cwd: Optional[str] = None,
            max_output: Optional[int] = None) -> ProcessResult:
        """Запустить утилиту и дождаться ее завершения"""
        pass


class IArtifactCache(ABC):
    """Интерфейс кэша производных файлов сессии"""

    @abstractmethod
    def session_path(self, create: bool = False) -> str:
        """Получить папку текущей сессии"""
        pass

    @abstractmethod
    def cached_artifact_path(self, series_instance_uid: str,
                             source_file: str, extension: str) -> str:
        """Получить путь к производному файлу"""
        pass

    @abstractmethod
    def unique_work_file(self, prefix: str, extension: str) -> str:
        """Получить уникальное имя рабочего файла в папке сессии"""
        pass

    @abstractmethod
    def list_artifacts(self) -> List[str]:
        """Получить список файлов сессии"""
        pass


class ISettingsRepository(ABC):
    """Интерфейс хранилища пользовательских настроек"""

    @abstractmethod
    def read_settings(self):
        """Прочитать настройки"""
        pass

    @abstractmethod
    def apply_settings(self, to_apply):
        """Применить частичные настройки и сохранить результат"""
        pass
