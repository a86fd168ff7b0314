import logging
import shutil
import zipfile
from typing import Optional, Union

from study_importer.config.settings import settings
from study_importer.domain.entities import DicomFile
from study_importer.domain.exceptions import ArchiveError, ConversionError
from study_importer.domain.repositories import IProcessRunner
from study_importer.infrastructure.session_cache import SessionArtifactCache


logger = logging.getLogger(__name__)


def decompress_dicom_file(dicom_file: DicomFile, cache: SessionArtifactCache) -> str:
    """
    Распаковать сжатый DICOM файл в уникальный рабочий файл папки сессии.
    Архив должен содержать ровно один DICOM объект, остальные записи игнорируются.
    """
    try:
        with zipfile.ZipFile(dicom_file.file) as archive:
            entries = [info for info in archive.infolist() if not info.is_dir()]
            if not entries:
                raise ArchiveError(f"Compressed DICOM file '{dicom_file.file}' contains no entry")
            if len(entries) > 1:
                logger.warning("Архив %s содержит %s файлов, распаковывается только первый",
                               dicom_file.file, len(entries))
            work_file = cache.unique_work_file('uncompressed', 'dicom')
            with archive.open(entries[0]) as source, open(work_file, 'wb') as target:
                shutil.copyfileobj(source, target)
    except (zipfile.BadZipFile, OSError) as e:
        raise ArchiveError(
            f"Compressed DICOM file '{dicom_file.file}' cannot be unpacked: {e}"
        ) from e

    logger.info("Распакован %s -> %s", dicom_file.file, work_file)
    return work_file


class DcmtkFileConverter:
    """Конвертация DICOM в PNG (dcmj2pnm) и извлечение PDF (dcm2pdf) с кэшем сессии

    Ключ кэша строится по исходному файлу (для сжатого - по имени архива),
    поэтому распаковка выполняется только при промахе кэша.
    """

    def __init__(self, runner: IProcessRunner, cache: SessionArtifactCache,
                 placeholder_image: Optional[str] = None):
        self.runner = runner
        self.cache = cache
        self.placeholder_image = placeholder_image or settings.PLACEHOLDER_IMAGE

    def placeholder(self) -> bytes:
        with open(self.placeholder_image, 'rb') as f:
            return f.read()

    def image_for(self, series_instance_uid: str,
                  source: Union[str, DicomFile, None] = None) -> bytes:
        """PNG для DICOM изображения. Без файла возвращается заглушка"""
        if source is None:
            logger.warning("DICOM изображение отсутствует, используется заглушка")
            return self.placeholder()

        return self._convert(
            tool='dcmj2pnm',
            flags=['-v', '+on2'],
            series_instance_uid=series_instance_uid,
            source=source,
            extension='png',
        )

    def document_for(self, series_instance_uid: str,
                     file_path: Union[str, DicomFile, None] = None) -> bytes:
        """PDF из инкапсулированного документа. Без файла - та же заглушка-картинка"""
        if file_path is None:
            logger.info("DICOM документ отсутствует, используется заглушка")
            return self.placeholder()

        return self._convert(
            tool='dcm2pdf',
            flags=['-v'],
            series_instance_uid=series_instance_uid,
            source=file_path,
            extension='pdf',
        )

    def _convert(self, tool, flags, series_instance_uid,
                 source: Union[str, DicomFile], extension) -> bytes:
        if not isinstance(source, DicomFile):
            source = DicomFile(source)

        self.cache.session_path(create=True)
        target_file = self.cache.cached_artifact_path(series_instance_uid, source.file, extension)

        if self.cache.exists(target_file):
            logger.info("Уже сконвертированный файл %s", target_file)
            return self.cache.read(target_file)

        dicom_file = decompress_dicom_file(source, self.cache) if source.compressed else source.file
        parameters = [*flags, dicom_file, target_file]
        logger.info("Конвертация DICOM в %s: %s %s", extension.upper(), tool, parameters)
        result = self.runner.run(tool, parameters)
        logger.debug("%s: %s", tool, result.stdout)

        if not result.succeeded:
            raise ConversionError(
                f"Unable to convert DICOM file '{source.file}'. Exitcode {result.exit_code}",
                tool=tool,
                exit_code=result.exit_code,
                file=source.file,
            )

        return self.cache.read(target_file)
