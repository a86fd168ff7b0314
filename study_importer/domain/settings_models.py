"""
Модель файла пользовательских настроек (study-importer-settings.json).
Ключи JSON совпадают с исходным форматом документа (camelCase).
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from study_importer.domain.entities import (
    DicomNode,
    DicomQuery,
    DicomWorklistNode,
    WorklistQueryDateRange,
)


class ImportSource(str, Enum):
    PATH1 = 'path1'
    PATH2 = 'path2'
    FOLDER = 'folder'
    FILES = 'files'


class AnnouncementMode(str, Enum):
    NO_ANNOUNCEMENT = 'NoAnnouncement'
    BEFORE_STORING_IMAGES = 'BeforeStoringImages'
    AFTER_STORING_IMAGES = 'AfterStoringImages'


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UiOptions(_Model):
    language: Optional[str] = None


class FhirConnectionOptions(_Model):
    base_url: Optional[str] = Field(default=None, alias='baseURL')
    username: Optional[str] = None
    password: Optional[str] = None
    bearer_token: Optional[str] = None


class Announcement(FhirConnectionOptions):
    mode: Optional[AnnouncementMode] = None


class ImportOptions(_Model):
    default_import_path1: Optional[str] = None
    default_import_type1: Optional[str] = None
    default_import_path2: Optional[str] = None
    default_import_type2: Optional[str] = None
    last_used_import_folder: Optional[str] = None
    last_used_import_mode: Optional[ImportSource] = None
    announcement: Optional[Announcement] = None


class DicomNodeOptions(_Model):
    display_name: Optional[str] = None
    hostname: Optional[str] = None
    port: Optional[int] = None
    aet: Optional[str] = None
    local_aet: Optional[str] = Field(default=None, alias='localAET')

    def to_node(self, local_aet: Optional[str] = None) -> DicomNode:
        """Узел домена. local_aet - общий AET из секции dicom, если у узла он не задан"""
        return DicomNode(
            display_name=self.display_name,
            hostname=self.hostname,
            port=self.port,
            aet=self.aet,
            local_aet=self.local_aet or local_aet,
        )


class DicomQueryOptions(_Model):
    scheduled_modality: Optional[str] = None
    scheduled_aet: Optional[str] = Field(default=None, alias='scheduledAET')
    scheduled_date: Optional[WorklistQueryDateRange] = None

    def to_query(self) -> DicomQuery:
        return DicomQuery(
            scheduled_modality=self.scheduled_modality,
            scheduled_aet=self.scheduled_aet,
            scheduled_date=self.scheduled_date,
        )


class DicomWorklistOptions(DicomNodeOptions):
    query: Optional[DicomQueryOptions] = None

    def to_worklist_node(self, local_aet: Optional[str] = None) -> DicomWorklistNode:
        return DicomWorklistNode(
            display_name=self.display_name,
            hostname=self.hostname,
            port=self.port,
            aet=self.aet,
            local_aet=self.local_aet or local_aet,
            query=self.query.to_query() if self.query else DicomQuery(),
        )


class DicomOptions(_Model):
    local_aet: Optional[str] = Field(default=None, alias='localAET')
    storage: Optional[DicomNodeOptions] = None
    worklist: Optional[DicomWorklistOptions] = None


class FhirOptions(FhirConnectionOptions):
    patient_id_json_path: Optional[str] = None


class UserSettings(_Model):
    ui: Optional[UiOptions] = None
    import_options: Optional[ImportOptions] = None
    dicom: Optional[DicomOptions] = None
    fhir: Optional[FhirOptions] = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


def default_configuration() -> UserSettings:
    """Настройки по умолчанию для нового файла"""
    return UserSettings(
        ui=UiOptions(language='de'),
        import_options=ImportOptions(
            default_import_path1='d:\\',
            default_import_type1='CD-ROM',
            default_import_path2='e:\\',
            default_import_type2='USB-DRIVE',
            last_used_import_mode=ImportSource.PATH1,
            announcement=Announcement(mode=AnnouncementMode.NO_ANNOUNCEMENT),
        ),
        dicom=DicomOptions(
            local_aet='STUDY-IMP',
            storage=DicomNodeOptions(
                display_name='Local DICOM Storage',
                hostname='localhost',
                port=104,
                aet='STORAGE',
                local_aet='ELO-SI',
            ),
            worklist=DicomWorklistOptions(
                display_name='Local DICOM WORKLIST',
                hostname='localhost',
                port=104,
                aet='WORKLIST',
                query=DicomQueryOptions(),
            ),
        ),
        fhir=FhirOptions(),
    )
