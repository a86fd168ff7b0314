import logging
import os
from datetime import date, timedelta
from typing import Callable, List, Optional

from study_importer.config.settings import settings
from study_importer.domain.entities import (
    DEFAULT_HOSTNAME,
    DEFAULT_LOCAL_AET,
    DEFAULT_PACS_AET,
    DEFAULT_PORT,
    DicomNode,
    DicomQuery,
    DicomWorklistNode,
    EchoResponse,
    FindResponse,
    StoreResponse,
    WorklistQueryDateRange,
)
from study_importer.domain.exceptions import (
    DicomFileNotFoundError,
    FileNotSetError,
    QueryTemplateNotFoundError,
    StoreFailedError,
)
from study_importer.domain.repositories import IArtifactCache, IProcessRunner
from study_importer.infrastructure.worklist_parser import read_worklist_file


logger = logging.getLogger(__name__)

STORE_SUCCESS_TEXT = 'Successfully'


def _address(node: DicomNode) -> List[str]:
    return [node.hostname or DEFAULT_HOSTNAME, str(node.port or DEFAULT_PORT)]


def echo_arguments(node: DicomNode) -> List[str]:
    """Аргументы echoscu"""
    return [
        '-v',
        '-aet', node.local_aet or DEFAULT_LOCAL_AET,
        '-aec', node.aet or DEFAULT_PACS_AET,
        *_address(node),
    ]


def store_arguments(node: DicomNode, dicom_file: str) -> List[str]:
    """Аргументы storescu"""
    return [
        '-v',
        '-aet', node.local_aet or DEFAULT_LOCAL_AET,
        '-aec', node.aet or DEFAULT_PACS_AET,
        *_address(node),
        dicom_file,
    ]


def scheduled_date_range(date_range: WorklistQueryDateRange, today: date) -> str:
    """Диапазон дат DICOM (YYYYMMDD или YYYYMMDD-YYYYMMDD)"""
    one_day = timedelta(days=1)
    if date_range == WorklistQueryDateRange.YESTERDAY:
        return (today - one_day).strftime('%Y%m%d')
    if date_range == WorklistQueryDateRange.TOMORROW:
        return (today + one_day).strftime('%Y%m%d')
    if date_range == WorklistQueryDateRange.TODAY_AND_TOMORROW:
        return f"{today.strftime('%Y%m%d')}-{(today + one_day).strftime('%Y%m%d')}"
    return today.strftime('%Y%m%d')


def query_filter_keys(query: Optional[DicomQuery], today: date) -> List[str]:
    """Ключи -k для заданных полей фильтра. Пустые поля не передаются"""
    if query is None:
        return []

    keys = []
    if query.scheduled_aet is not None:
        keys += ['-k', f'(0040,0001)={query.scheduled_aet}']
    if query.scheduled_modality is not None:
        keys += ['-k', f'(0040,0100)[0].Modality={query.scheduled_modality}']
    if query.scheduled_date is not None:
        date_range = scheduled_date_range(WorklistQueryDateRange(query.scheduled_date), today)
        keys += ['-k', f'(0040,0100)[0].ScheduledProcedureStepStartDate={date_range}']
    return keys


def find_arguments(node: DicomWorklistNode, result_file_name: str,
                   query_template: str, today: date) -> List[str]:
    """
    Аргументы findscu:
    findscu [-k <filter>]... -aet <localAET> -Xs <result> <host> <port> -aec <AET> <template>
    """
    return [
        *query_filter_keys(node.query, today),
        '-aet', node.local_aet or DEFAULT_LOCAL_AET,
        '-Xs', result_file_name,
        *_address(node),
        '-aec', node.aet or DEFAULT_PACS_AET,
        query_template,
    ]


class DcmtkNetworkClient:
    """Сетевые операции DICOM (C-ECHO, C-FIND, C-STORE) через утилиты DCMTK"""

    def __init__(self, runner: IProcessRunner, cache: IArtifactCache,
                 query_template: Optional[str] = None,
                 result_file_name: Optional[str] = None,
                 today: Callable[[], date] = date.today):
        self.runner = runner
        self.cache = cache
        self.query_template = query_template or settings.QUERY_TEMPLATE_FILE
        self.result_file_name = result_file_name or settings.QUERY_RESULT_FILE_NAME
        self.today = today

    def verify(self, node: DicomNode) -> EchoResponse:
        """C-ECHO. Ошибка утилиты возвращается в ответе, а не исключением"""
        result = self.runner.run('echoscu', echo_arguments(node))
        logger.info("C-ECHO %s: код %s", node.hostname, result.exit_code)

        return EchoResponse(
            exit_code=result.exit_code,
            display_text=result.stdout if result.succeeded else result.stderr,
        )

    def query(self, node: DicomWorklistNode) -> FindResponse:
        """
        C-FIND worklist. Ответы разбираются из XML файла, который пишет findscu.
        Отсутствующий шаблон запроса - ошибка настройки, findscu не запускается.
        """
        # findscu работает в папке сессии, шаблон нужен абсолютным путем
        query_template = os.path.abspath(self.query_template)
        if not os.path.isfile(query_template):
            raise QueryTemplateNotFoundError(
                f"Worklist query template '{query_template}' not found. "
                "Set STUDY_IMPORTER_QUERY_TEMPLATE_FILE to an existing DICOM file"
            )

        session_path = self.cache.session_path(create=True)
        result_file = os.path.join(session_path, self.result_file_name)
        parameters = find_arguments(node, self.result_file_name, query_template, self.today())

        if os.path.exists(result_file):
            os.remove(result_file)

        result = self.runner.run('findscu', parameters, cwd=session_path)
        logger.info("C-FIND %s: код %s", node.hostname, result.exit_code)

        entries = read_worklist_file(result_file) if result.succeeded else []
        if os.path.exists(result_file):
            os.remove(result_file)

        response = FindResponse(
            exit_code=result.exit_code,
            display_text=result.stdout if result.succeeded else result.stderr,
            entries=entries,
        )
        logger.debug("C-FIND ответ: %s записей", len(entries))
        return response

    def store(self, node: DicomNode, dicom_file: Optional[str]) -> StoreResponse:
        """
        C-STORE одного файла. Ошибки выбрасываются исключениями,
        проверки файла выполняются до запуска storescu.
        """
        if dicom_file is None:
            raise FileNotSetError(f"Unable to store DICOM file '{dicom_file}'. File not set")

        if not os.path.isfile(dicom_file):
            raise DicomFileNotFoundError(f"Unable to store DICOM file '{dicom_file}'. File not found")

        parameters = store_arguments(node, dicom_file)
        logger.info("Отправка DICOM файла: storescu %s", parameters)
        result = self.runner.run('storescu', parameters)
        logger.debug("storescu: %s", result.stdout)

        if not result.succeeded:
            raise StoreFailedError(
                f"Unable to store DICOM file '{dicom_file}'. Exitcode {result.exit_code}"
                + (f": {result.stderr.strip()}" if result.stderr.strip() else ''),
                tool='storescu',
                exit_code=result.exit_code,
                file=dicom_file,
            )

        return StoreResponse(exit_code=result.exit_code, display_text=STORE_SUCCESS_TEXT)
