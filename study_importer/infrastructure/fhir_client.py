import logging
from typing import Any, Dict, Optional

import requests
from requests.auth import HTTPBasicAuth

from study_importer.config.settings import settings
from study_importer.domain.entities import DicomStudy
from study_importer.domain.exceptions import FhirError
from study_importer.domain.settings_models import FhirConnectionOptions


logger = logging.getLogger(__name__)


def imaging_study_resource(study: DicomStudy) -> Dict[str, Any]:
    """Ресурс FHIR ImagingStudy для анонса исследования"""
    return {
        'resourceType': 'ImagingStudy',
        'identifier': [
            {
                'use': 'official',
                'system': 'urn:dicom:uid',
                'value': f'urn:oid:{study.study_instance_uid}',
            },
        ],
        'subject': {
            'reference': f'Patient/{study.patient.patient_id if study.patient else None}',
        },
        'basedOn': [
            {
                'identifier': {
                    'type': {
                        'coding': [
                            {
                                'system': 'http://terminology.hl7.org/CodeSystem/v2-0203',
                                'code': 'ACSN',
                            },
                        ],
                    },
                    'system': 'http://studyimporter.org/accession',
                    'value': study.accession_number,
                },
            },
        ],
    }


class FhirClient:
    """Клиент FHIR сервера: поиск пациентов и анонс исследований"""

    def __init__(self, options: FhirConnectionOptions, timeout: Optional[int] = None):
        self.base_url = (options.base_url or '').rstrip('/')
        self.options = options
        self.timeout = timeout or settings.REQUEST_TIMEOUT

    def _auth_kwargs(self) -> Dict[str, Any]:
        """Bearer токен, иначе basic auth при заданном пользователе"""
        headers = {'Accept': 'application/json'}
        kwargs: Dict[str, Any] = {'headers': headers}
        if self.options.bearer_token:
            headers['Authorization'] = f'Bearer {self.options.bearer_token}'
        elif self.options.username:
            kwargs['auth'] = HTTPBasicAuth(self.options.username, self.options.password or '')
        return kwargs

    def _make_request(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        """Выполнить HTTP запрос к FHIR API. Сетевые ошибки превращаются в FhirError"""
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        request_kwargs = self._auth_kwargs()
        request_kwargs['headers'].update(kwargs.pop('headers', {}))
        request_kwargs.update(kwargs)

        # Добавляем таймаут если не указан
        if 'timeout' not in request_kwargs:
            request_kwargs['timeout'] = self.timeout

        logger.info("Запрос %s %s", method, url)
        try:
            return requests.request(method, url, **request_kwargs)
        except requests.RequestException as e:
            logger.warning("Ошибка при запросе к FHIR %s: %s", url, e)
            raise FhirError(f"Request {method} {url} failed: {e}") from e

    @staticmethod
    def _json_or_raise(response: requests.Response) -> Any:
        if not response.ok:
            raise FhirError(
                f"Query failed. Server response status {response.status_code}: {response.reason}.",
                status=response.status_code,
            )
        # 201 Created может прийти без тела
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise FhirError(
                f"Server response of {response.url} is not JSON: {e}",
                status=response.status_code,
            ) from e

    def fetch_patients(self, query: str) -> Any:
        """Поиск пациентов по фонетическому совпадению"""
        response = self._make_request('GET', '/Patient', params={'phonetic': query})
        return self._json_or_raise(response)

    def announce_study(self, study: DicomStudy) -> Any:
        """Анонсировать исследование (POST ImagingStudy)"""
        response = self._make_request(
            'POST',
            '/ImagingStudy',
            json=imaging_study_resource(study),
            headers={'Content-Type': 'application/json'},
        )
        return self._json_or_raise(response)

    def test_connection(self) -> Dict[str, Any]:
        """Проверить соединение. Ошибки сервера возвращаются как статус"""
        try:
            response = self._make_request('GET', '/Patient', params={'phonetic': 'ABC'})
        except FhirError as e:
            return {'status': None, 'status_text': str(e)}
        return {'status': response.status_code, 'status_text': response.reason}
