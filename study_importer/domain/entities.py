from dataclasses import dataclass, field
from typing import List, Optional
from enum import Enum


DEFAULT_LOCAL_AET = "STUDYIMP"
DEFAULT_PACS_AET = "PACS"
DEFAULT_HOSTNAME = "localhost"
DEFAULT_PORT = 11112


class DirectoryRecordType(str, Enum):
    """Типы записей DICOMDIR (0004,1430)"""
    PATIENT = "PATIENT"
    STUDY = "STUDY"
    SERIES = "SERIES"
    IMAGE = "IMAGE"
    ENCAP_DOC = "ENCAP DOC"


class WorklistQueryDateRange(str, Enum):
    """Диапазон даты запланированной процедуры"""
    YESTERDAY = "Yesterday"
    TODAY = "Today"
    TOMORROW = "Tomorrow"
    TODAY_AND_TOMORROW = "TodayAndTomorrow"


@dataclass(frozen=True)
class DicomNode:
    """Удаленный DICOM узел"""
    display_name: Optional[str] = None
    hostname: Optional[str] = None
    port: Optional[int] = None
    aet: Optional[str] = None
    local_aet: Optional[str] = None


@dataclass(frozen=True)
class DicomQuery:
    """Фильтр запроса worklist. None - без фильтра по атрибуту"""
    scheduled_modality: Optional[str] = None
    scheduled_aet: Optional[str] = None
    scheduled_date: Optional[WorklistQueryDateRange] = None


@dataclass(frozen=True)
class DicomWorklistNode(DicomNode):
    """DICOM узел worklist вместе с фильтром запроса"""
    query: DicomQuery = field(default_factory=DicomQuery)


@dataclass
class ProcessResult:
    """Результат запуска внешней утилиты. exit_code None - процесс не запустился"""
    exit_code: Optional[int]
    stdout: str = ""
    stderr: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


@dataclass
class EchoResponse:
    """Ответ на C-ECHO"""
    exit_code: Optional[int]
    display_text: str


@dataclass
class WorklistEntry:
    """Запись worklist. Все атрибуты строковые, т.к. значения могут быть некорректными"""
    patient_id: Optional[str] = None
    patient_display_name: Optional[str] = None
    patient_day_of_birth: Optional[str] = None
    patient_gender: Optional[str] = None
    study_description: Optional[str] = None
    scheduled_date: Optional[str] = None
    scheduled_time: Optional[str] = None
    accession_number: Optional[str] = None
    scheduled_modality: Optional[str] = None
    scheduled_station_aet: Optional[str] = None


@dataclass
class FindResponse:
    """Ответ на C-FIND"""
    exit_code: Optional[int]
    display_text: str
    entries: List[WorklistEntry] = field(default_factory=list)


@dataclass
class StoreResponse:
    """Ответ на C-STORE"""
    exit_code: Optional[int]
    display_text: str


@dataclass
class DicomTool:
    """Утилита DCMTK и результат ее проверки"""
    display_name: str
    version: Optional[str] = None
    status: bool = False


@dataclass
class ToolchainValidationResult:
    dicom_tools: List[DicomTool] = field(default_factory=list)

    @property
    def all_available(self) -> bool:
        return all(tool.status for tool in self.dicom_tools)


@dataclass(frozen=True)
class DicomFile:
    """Кандидат на импорт. compressed - zip архив с одним DICOM объектом"""
    file: str
    compressed: bool = False


@dataclass
class XmlDumpResponse:
    """XML представление DICOM файла (dcm2xml)"""
    xml: str
    exit_code: Optional[int]
    file: Optional[str] = None


@dataclass
class DicomPatient:
    """Пациент"""
    patient_id: Optional[str] = None
    patient_display_name: Optional[str] = None
    patient_day_of_birth: Optional[str] = None
    patient_gender: Optional[str] = None


@dataclass
class DicomImage:
    """DICOM изображение или инкапсулированный документ"""
    instance_number: Optional[int] = None
    series_instance_uid: Optional[str] = None
    study_instance_uid: Optional[str] = None
    manufacturer: Optional[str] = None
    manufacturer_model_name: Optional[str] = None
    dicom_file_url: Optional[str] = None
    ref_file_id: Optional[str] = None
    directory_record_type: Optional[str] = None

    @property
    def is_document(self) -> bool:
        return self.directory_record_type == DirectoryRecordType.ENCAP_DOC.value


@dataclass
class DicomSeries:
    """Серия DICOM снимков"""
    series_instance_uid: Optional[str] = None
    series_description: Optional[str] = None
    modality: Optional[str] = None
    institution_name: Optional[str] = None
    images: List[DicomImage] = field(default_factory=list)
    preview_image: Optional[DicomImage] = field(default=None, repr=False)
    patient: Optional[DicomPatient] = field(default=None, repr=False)

    def add_image(self, image: DicomImage):
        """Добавить изображение и пересчитать превью (средний снимок серии)"""
        self.images.append(image)
        self.preview_image = self.images[len(self.images) // 2]


@dataclass
class DicomStudy:
    """Исследование пациента"""
    study_instance_uid: Optional[str] = None
    study_description: Optional[str] = None
    performed_date: Optional[str] = None
    performed_time: Optional[str] = None
    accession_number: Optional[str] = None
    series: List[DicomSeries] = field(default_factory=list)
    patient: Optional[DicomPatient] = field(default=None, repr=False)

    def iter_images(self):
        for series in self.series:
            yield from series.images
