import logging
import os
from typing import List, Optional

from study_importer.config.settings import settings
from study_importer.domain.entities import DicomFile, XmlDumpResponse
from study_importer.domain.exceptions import DicomDirReadError
from study_importer.domain.repositories import IProcessRunner
from study_importer.infrastructure.dcmtk_converter import decompress_dicom_file
from study_importer.infrastructure.session_cache import SessionArtifactCache


logger = logging.getLogger(__name__)

DICOMDIR_FILE_NAME = 'DICOMDIR'
DICOM_EXTENSION = '.dicom'
COMPRESSED_DICOM_EXTENSION = '.dicomzip'


def collect_dicom_files(folder: Optional[str]) -> List[DicomFile]:
    """
    Собрать DICOM файлы папки (без вложенных папок).
    Файлы с 'pre' в имени пропускаются, .dicomzip считаются сжатыми.
    """
    if folder is None or not os.path.isdir(folder):
        return []

    dicom_files = []
    for filename in sorted(os.listdir(folder)):
        lower_name = filename.lower()
        if 'pre' in filename:
            continue
        if not (lower_name.endswith(DICOM_EXTENSION) or lower_name.endswith(COMPRESSED_DICOM_EXTENSION)):
            continue
        path = os.path.join(folder, filename)
        if os.path.isfile(path):
            dicom_files.append(DicomFile(
                file=path,
                compressed=lower_name.endswith(COMPRESSED_DICOM_EXTENSION),
            ))
    return dicom_files


def exists_dicomdir(folder: Optional[str]) -> bool:
    """Проверить наличие файла DICOMDIR в папке"""
    return folder is not None and os.path.exists(os.path.join(folder, DICOMDIR_FILE_NAME))


class DicomXmlReader:
    """XML представление DICOMDIR и отдельных DICOM файлов через dcm2xml"""

    def __init__(self, runner: IProcessRunner, cache: SessionArtifactCache,
                 max_output: Optional[int] = None):
        self.runner = runner
        self.cache = cache
        self.max_output = max_output or settings.MAX_OUTPUT_SIZE

    def _dump(self, dicom_file: str, error_message: str) -> XmlDumpResponse:
        parameters = ['--convert-to-utf8', dicom_file]
        result = self.runner.run('dcm2xml', parameters, max_output=self.max_output)
        logger.info("dcm2xml код завершения: %s", result.exit_code)

        if not result.succeeded:
            details = result.stderr.strip()
            raise DicomDirReadError(
                f"{error_message} Exitcode {result.exit_code}" + (f": {details}" if details else ''),
                tool='dcm2xml',
                exit_code=result.exit_code,
                file=dicom_file,
            )

        logger.debug("dcm xml: %s", result.stdout)
        return XmlDumpResponse(xml=result.stdout, exit_code=result.exit_code, file=dicom_file)

    def read_dicomdir(self, folder: str) -> XmlDumpResponse:
        """Прочитать DICOMDIR папки как XML"""
        dicomdir_file = os.path.join(folder, DICOMDIR_FILE_NAME)
        logger.info("Анализ DICOMDIR: %s", dicomdir_file)
        return self._dump(dicomdir_file, f"Unable to extract studies from DICOMDIR '{dicomdir_file}'.")

    def read_file(self, dicom_file: DicomFile) -> XmlDumpResponse:
        """Прочитать отдельный DICOM файл как XML, сжатый файл предварительно распаковывается"""
        work_file = dicom_file.file
        if dicom_file.compressed:
            work_file = decompress_dicom_file(dicom_file, self.cache)
        logger.info("Анализ DICOM файла: %s", work_file)
        return self._dump(work_file, f"Unable to extract studies from DICOM file '{dicom_file.file}'.")
