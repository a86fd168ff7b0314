import logging
import os
from typing import List

from study_importer.domain.entities import WorklistEntry
from study_importer.infrastructure.dcmtk_xml import (
    children, first_item, get_tag_value, local_name, parse_xml,
)


logger = logging.getLogger(__name__)

SCHEDULED_PROCEDURE_STEP_SEQUENCE = '0040,0100'


def parse_worklist_xml(xml: str) -> List[WorklistEntry]:
    """
    Разобрать ответы C-FIND, записанные `findscu -Xs`:
    <responses type="C-FIND"><data-set>...</data-set>...</responses>
    """
    root = parse_xml(xml)
    if root is None:
        return []

    if local_name(root.tag) == 'data-set':
        data_sets = [root]
    else:
        data_sets = children(root, 'data-set')

    return [_map_entry(data_set) for data_set in data_sets]


def read_worklist_file(file_path: str) -> List[WorklistEntry]:
    """Прочитать файл ответов C-FIND. Отсутствующий файл - пустой список"""
    if not os.path.isfile(file_path):
        logger.info("Файл ответов C-FIND %s не создан", file_path)
        return []
    with open(file_path, 'r', encoding='utf-8', errors='replace') as f:
        return parse_worklist_xml(f.read())


def _map_entry(data_set) -> WorklistEntry:
    step = first_item(data_set, SCHEDULED_PROCEDURE_STEP_SEQUENCE)

    def step_value(tag):
        return get_tag_value(step, tag) if step is not None else None

    return WorklistEntry(
        patient_id=get_tag_value(data_set, '0010,0020'),
        patient_display_name=get_tag_value(data_set, '0010,0010'),
        patient_day_of_birth=get_tag_value(data_set, '0010,0030'),
        patient_gender=get_tag_value(data_set, '0010,0040'),
        # RequestedProcedureDescription, иначе StudyDescription
        study_description=(get_tag_value(data_set, '0032,1060')
                           or get_tag_value(data_set, '0008,1030')),
        scheduled_date=step_value('0040,0002'),
        scheduled_time=step_value('0040,0003'),
        accession_number=get_tag_value(data_set, '0008,0050'),
        scheduled_modality=step_value('0008,0060'),
        scheduled_station_aet=step_value('0040,0001'),
    )
