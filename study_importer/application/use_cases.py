import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from study_importer.domain.entities import (
    DicomImage,
    DicomNode,
    DicomStudy,
    DicomWorklistNode,
    EchoResponse,
    FindResponse,
    ToolchainValidationResult,
)
from study_importer.domain.exceptions import StudyImporterError
from study_importer.domain.repositories import ISettingsRepository
from study_importer.domain.settings_models import AnnouncementMode, ImportOptions, UserSettings
from study_importer.infrastructure.dcmtk_converter import DcmtkFileConverter
from study_importer.infrastructure.dcmtk_network import DcmtkNetworkClient
from study_importer.infrastructure.dcmtk_reader import (
    DicomXmlReader, collect_dicom_files, exists_dicomdir,
)
from study_importer.infrastructure.dcmtk_tools import ToolchainValidator
from study_importer.infrastructure.dicomdir_mapper import DicomTreeBuilder, ProgressCallback
from study_importer.infrastructure.fhir_client import FhirClient


logger = logging.getLogger(__name__)


class ValidateToolchainUseCase:
    """Сценарий проверки утилит DCMTK"""

    def __init__(self, validator: ToolchainValidator):
        self.validator = validator

    def execute(self) -> ToolchainValidationResult:
        return self.validator.validate_all()


class VerifyNodeUseCase:
    """Сценарий проверки связи с DICOM узлом (C-ECHO)"""

    def __init__(self, network: DcmtkNetworkClient):
        self.network = network

    def execute(self, node: DicomNode) -> EchoResponse:
        logger.info("C-ECHO запрос к %s:%s", node.hostname, node.port)
        return self.network.verify(node)


class QueryWorklistUseCase:
    """Сценарий запроса worklist (C-FIND)"""

    def __init__(self, network: DcmtkNetworkClient):
        self.network = network

    def execute(self, node: DicomWorklistNode) -> FindResponse:
        logger.info("C-FIND запрос к %s:%s", node.hostname, node.port)
        return self.network.query(node)


class CollectStudiesUseCase:
    """
    Сценарий чтения исследований из папки.
    Если в папке есть DICOMDIR - читается он, иначе каждый DICOM файл по отдельности.
    """

    def __init__(self, reader: DicomXmlReader,
                 settings_repo: Optional[ISettingsRepository] = None):
        self.reader = reader
        self.settings_repo = settings_repo
        self.errors: List[str] = []

    def execute(self, folder: str,
                progress: Optional[ProgressCallback] = None,
                file_progress: Optional[Callable[[int, int], None]] = None) -> List[DicomStudy]:
        self.errors = []
        builder = DicomTreeBuilder(progress)

        if exists_dicomdir(folder):
            response = self.reader.read_dicomdir(folder)
            builder.add_dicomdir(response.xml, folder)
        else:
            dicom_files = collect_dicom_files(folder)
            logger.info("Найдено %s DICOM файлов в %s", len(dicom_files), folder)
            for index, dicom_file in enumerate(dicom_files, 1):
                try:
                    response = self.reader.read_file(dicom_file)
                    builder.add_file(response.xml, response.file or dicom_file.file)
                except StudyImporterError as e:
                    logger.error("Ошибка чтения %s: %s", dicom_file.file, e)
                    self.errors.append(str(e))
                if file_progress is not None:
                    file_progress(index, len(dicom_files))

        if self.settings_repo is not None:
            self.settings_repo.apply_settings(UserSettings(
                import_options=ImportOptions(last_used_import_folder=folder),
            ))

        return builder.result()


@dataclass
class StoreReport:
    """Итог отправки исследований"""
    lines: List[str] = field(default_factory=list)
    stored: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failed


class StoreStudiesUseCase:
    """
    Сценарий отправки выбранных исследований в PACS.
    Изображения отправляются по одному, отсортированными по пути файла.
    """

    def __init__(self, network: DcmtkNetworkClient,
                 fhir_client: Optional[FhirClient] = None,
                 announcement_mode: Optional[AnnouncementMode] = None):
        self.network = network
        self.fhir_client = fhir_client
        self.announcement_mode = announcement_mode or AnnouncementMode.NO_ANNOUNCEMENT

    def _announce(self, studies: List[DicomStudy], report: StoreReport):
        if self.fhir_client is None:
            return
        for study in studies:
            logger.info("Анонс исследования %s", study.study_instance_uid)
            try:
                self.fhir_client.announce_study(study)
                report.lines.append(f"Study {study.study_instance_uid} announced")
            except StudyImporterError as e:
                logger.error("Ошибка анонса %s: %s", study.study_instance_uid, e)
                report.lines.append(f"Study {study.study_instance_uid} announcement failed: {e}")

    def execute(self, studies: List[DicomStudy], node: DicomNode,
                on_progress: Optional[Callable[[int, int], None]] = None) -> StoreReport:
        report = StoreReport()

        if self.announcement_mode == AnnouncementMode.BEFORE_STORING_IMAGES:
            self._announce(studies, report)

        images: List[DicomImage] = [image for study in studies for image in study.iter_images()]
        images.sort(key=lambda image: image.dicom_file_url or '')

        for count, image in enumerate(images, 1):
            try:
                self.network.store(node, image.dicom_file_url)
                report.stored.append(image.dicom_file_url)
                report.lines.append(f"Image {image.dicom_file_url} successfully stored")
            except StudyImporterError as e:
                logger.error(e)
                report.failed.append(image.dicom_file_url)
                report.lines.append(f"Storing image {image.dicom_file_url} failed: {e}")
            if on_progress is not None:
                on_progress(count, len(images))

        if self.announcement_mode == AnnouncementMode.AFTER_STORING_IMAGES:
            self._announce(studies, report)

        return report


class PreviewUseCase:
    """Сценарий получения превью: PNG для изображения, PDF для документа"""

    def __init__(self, converter: DcmtkFileConverter):
        self.converter = converter

    def execute(self, image: Optional[DicomImage]) -> bytes:
        if image is None:
            return self.converter.image_for('', None)
        if image.is_document:
            return self.converter.document_for(image.series_instance_uid, image.dicom_file_url)
        return self.converter.image_for(image.series_instance_uid, image.dicom_file_url)
