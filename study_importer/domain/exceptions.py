from typing import Optional


class StudyImporterError(Exception):
    """Базовое исключение импортера"""


class ToolExecutionError(StudyImporterError):
    """Утилита DCMTK не запустилась или завершилась с ошибкой"""

    def __init__(self, message: str, tool: Optional[str] = None,
                 exit_code: Optional[int] = None, file: Optional[str] = None):
        super().__init__(message)
        self.tool = tool
        self.exit_code = exit_code
        self.file = file


class ConversionError(ToolExecutionError):
    """Ошибка конвертации DICOM в PNG/PDF"""


class DicomDirReadError(ToolExecutionError):
    """dcm2xml не смог прочитать DICOMDIR или DICOM файл"""


class StoreError(StudyImporterError):
    """Ошибка отправки DICOM файла (C-STORE)"""


class FileNotSetError(StoreError):
    """В запросе не указан файл"""


class DicomFileNotFoundError(StoreError):
    """Файл указан, но отсутствует на диске"""


class StoreFailedError(StoreError, ToolExecutionError):
    """storescu завершился с ненулевым кодом"""


class DicomDirStructureError(StudyImporterError):
    """Записи DICOMDIR идут в недопустимом порядке"""


class ArchiveError(StudyImporterError):
    """Сжатый DICOM контейнер не содержит файлов"""


class SettingsParseError(StudyImporterError):
    """Файл настроек поврежден"""


class FhirError(StudyImporterError):
    """FHIR сервер вернул ошибку"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class QueryTemplateNotFoundError(StudyImporterError):
    """Шаблон запроса worklist (C-FIND) не найден"""
