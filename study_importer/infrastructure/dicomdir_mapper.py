"""
Построение дерева Пациент -> Исследование -> Серия -> Изображение
из XML дампа DICOMDIR (dcm2xml) или отдельных DICOM файлов.

Записи каталога обрабатываются строго по порядку документа за один проход:
запись STUDY предшествует своим SERIES, а те - своим IMAGE/ENCAP DOC.
"""

import logging
from typing import Callable, Dict, List, Optional

from study_importer.domain.entities import (
    DicomImage,
    DicomPatient,
    DicomSeries,
    DicomStudy,
    DirectoryRecordType,
)
from study_importer.domain.exceptions import DicomDirStructureError
from study_importer.infrastructure.dcmtk_xml import (
    get_tag_value, local_name, parse_xml, select,
)


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, int], None]

DIRECTORY_RECORD_TYPE = '0004,1430'
REFERENCED_FILE_ID = '0004,1500'
SOP_CLASS_UID = '0008,0016'
ENCAPSULATED_PDF_STORAGE = '1.2.840.10008.5.1.4.1.1.104.1'


def map_patient(node) -> DicomPatient:
    return DicomPatient(
        patient_id=get_tag_value(node, '0010,0020'),
        patient_display_name=get_tag_value(node, '0010,0010'),
        patient_day_of_birth=get_tag_value(node, '0010,0030'),
        patient_gender=get_tag_value(node, '0010,0040'),
    )


def map_study(node) -> DicomStudy:
    return DicomStudy(
        study_instance_uid=get_tag_value(node, '0020,000d'),
        study_description=get_tag_value(node, '0008,1030'),
        performed_date=get_tag_value(node, '0008,0020'),
        performed_time=get_tag_value(node, '0008,0030'),
        accession_number=get_tag_value(node, '0008,0050'),
    )


def map_series(node) -> DicomSeries:
    return DicomSeries(
        series_instance_uid=get_tag_value(node, '0020,000e'),
        series_description=get_tag_value(node, '0008,103e'),
        modality=get_tag_value(node, '0008,0060'),
        institution_name=get_tag_value(node, '0008,0080'),
    )


def _instance_number(node) -> Optional[int]:
    value = get_tag_value(node, '0020,0013')
    try:
        return int(value.strip()) if value is not None else None
    except ValueError:
        logger.warning("Некорректный InstanceNumber: %r", value)
        return None


def resolve_file_url(folder: str, ref_file_id: Optional[str]) -> Optional[str]:
    """Путь к файлу записи: папка импорта + ссылка на файл с прямыми слешами"""
    if ref_file_id is None:
        return None
    return folder + '/' + ref_file_id.replace('\\', '/')


def map_image(node, series_instance_uid: Optional[str],
              study_instance_uid: Optional[str], folder: str) -> DicomImage:
    ref_file_id = get_tag_value(node, REFERENCED_FILE_ID)
    return DicomImage(
        instance_number=_instance_number(node),
        series_instance_uid=series_instance_uid,
        study_instance_uid=study_instance_uid,
        manufacturer=get_tag_value(node, '0008,0070'),
        manufacturer_model_name=get_tag_value(node, '0008,1090'),
        ref_file_id=ref_file_id,
        dicom_file_url=resolve_file_url(folder, ref_file_id),
        directory_record_type=get_tag_value(node, DIRECTORY_RECORD_TYPE),
    )


class DicomTreeBuilder:
    """
    Потоковый свертыватель записей каталога с переносимым состоянием
    (текущие пациент, исследование и серия).

    Ключи (PatientID, StudyInstanceUID, SeriesInstanceUID) - первая запись побеждает:
    повторные записи сливаются в уже созданную сущность.
    """

    def __init__(self, progress: Optional[ProgressCallback] = None):
        self.progress = progress
        self.patients: Dict[Optional[str], DicomPatient] = {}
        self.studies: Dict[Optional[str], DicomStudy] = {}
        self.series: Dict[Optional[str], DicomSeries] = {}
        self.current_patient: Optional[DicomPatient] = None
        self.current_study: Optional[DicomStudy] = None
        self.current_series: Optional[DicomSeries] = None
        self._record_index = 0

    def _notify(self):
        if self.progress is not None:
            self.progress(len(self.patients), len(self.studies), len(self.series))

    def feed(self, node, folder: str):
        """Обработать одну запись каталога"""
        self._record_index += 1
        record_type = get_tag_value(node, DIRECTORY_RECORD_TYPE)

        if record_type == DirectoryRecordType.PATIENT.value:
            self._add_patient(map_patient(node))
        elif record_type == DirectoryRecordType.STUDY.value:
            self._add_study(map_study(node))
        elif record_type == DirectoryRecordType.SERIES.value:
            self._add_series(map_series(node))
        elif record_type in (DirectoryRecordType.IMAGE.value, DirectoryRecordType.ENCAP_DOC.value):
            self._add_image(node, folder)
        else:
            logger.debug("Запись %s типа %r пропущена", self._record_index, record_type)

    def _add_patient(self, patient: DicomPatient):
        # Карта хранит свежую запись, а текущим остается уже известный объект.
        # Ранее созданные исследования продолжают ссылаться на старый объект.
        self.current_patient = self.patients.get(patient.patient_id, patient)
        self.patients[patient.patient_id] = patient
        # Серии и изображения нового пациента не должны попасть в чужое исследование
        self.current_study = None
        self.current_series = None
        self._notify()

    def _add_study(self, study: DicomStudy):
        study.patient = self.current_patient
        self.current_study = self.studies.get(study.study_instance_uid, study)
        self.studies[self.current_study.study_instance_uid] = self.current_study
        self.current_series = None
        self._notify()

    def _add_series(self, series: DicomSeries):
        if self.current_study is None:
            raise DicomDirStructureError(
                f"SERIES record #{self._record_index} ({series.series_instance_uid}) "
                f"has no preceding STUDY record"
            )
        series.patient = self.current_patient
        self.current_series = self.series.get(series.series_instance_uid, series)
        self.series[self.current_series.series_instance_uid] = self.current_series
        if not any(s is self.current_series for s in self.current_study.series):
            self.current_study.series.append(self.current_series)
        self._notify()

    def _add_image(self, node, folder: str):
        if self.current_series is None or self.current_study is None:
            raise DicomDirStructureError(
                f"{get_tag_value(node, DIRECTORY_RECORD_TYPE)} record #{self._record_index} "
                f"has no preceding SERIES record"
            )
        image = map_image(
            node,
            self.current_series.series_instance_uid,
            self.current_study.study_instance_uid,
            folder,
        )
        self.current_series.add_image(image)

    def add_dicomdir(self, xml: str, folder: str):
        """Добавить все записи каталога из XML дампа DICOMDIR"""
        for node in directory_records(xml):
            self.feed(node, folder)

    def add_file(self, xml: str, dicom_file_url: str):
        """
        Добавить отдельный DICOM файл. Набор данных файла подается в свертыватель
        как цепочка записей PATIENT -> STUDY -> SERIES -> IMAGE (или ENCAP DOC).
        """
        root = parse_xml(xml)
        if root is None:
            return
        data_sets = select(root, ['data-set']) if local_name(root.tag) == 'file-format' else []
        if not data_sets:
            logger.warning("Файл %s не содержит набора данных", dicom_file_url)
            return
        data_set = data_sets[0]

        self._add_patient(map_patient(data_set))
        self._add_study(map_study(data_set))
        self._add_series(map_series(data_set))

        sop_class = get_tag_value(data_set, SOP_CLASS_UID)
        record_type = (DirectoryRecordType.ENCAP_DOC if sop_class == ENCAPSULATED_PDF_STORAGE
                       else DirectoryRecordType.IMAGE)
        file_url = dicom_file_url.replace('\\', '/')
        self.current_series.add_image(DicomImage(
            instance_number=_instance_number(data_set),
            series_instance_uid=self.current_series.series_instance_uid,
            study_instance_uid=self.current_study.study_instance_uid,
            manufacturer=get_tag_value(data_set, '0008,0070'),
            manufacturer_model_name=get_tag_value(data_set, '0008,1090'),
            dicom_file_url=file_url,
            ref_file_id=file_url.rsplit('/', 1)[-1],
            directory_record_type=record_type.value,
        ))

    def result(self) -> List[DicomStudy]:
        """Все зарегистрированные исследования в порядке добавления"""
        return list(self.studies.values())


def directory_records(xml: str) -> list:
    """Записи каталога /file-format/data-set/sequence/item"""
    root = parse_xml(xml)
    if root is None or local_name(root.tag) != 'file-format':
        return []
    return select(root, ['data-set', 'sequence', 'item'])


def build_tree(xml: str, folder: str,
               progress: Optional[ProgressCallback] = None) -> List[DicomStudy]:
    """
    Построить список исследований из XML дампа DICOMDIR.
    Поврежденный XML или отсутствие записей дают пустой список.
    """
    logger.debug("Построение дерева DICOMDIR, папка %s", folder)
    builder = DicomTreeBuilder(progress)
    builder.add_dicomdir(xml, folder)
    return builder.result()
