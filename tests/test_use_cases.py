"""Tests for study_importer/application/use_cases.py."""

import os
from unittest.mock import MagicMock, patch

import pytest
import requests

from study_importer.application.use_cases import (
    CollectStudiesUseCase,
    PreviewUseCase,
    StoreStudiesUseCase,
)
from study_importer.domain.entities import (
    DicomImage,
    DicomNode,
    DicomSeries,
    DicomStudy,
    ProcessResult,
    StoreResponse,
)
from study_importer.domain.exceptions import DicomDirStructureError, StoreFailedError
from study_importer.domain.settings_models import AnnouncementMode, FhirConnectionOptions
from study_importer.infrastructure.dcmtk_reader import DicomXmlReader
from study_importer.infrastructure.fhir_client import FhirClient
from study_importer.infrastructure.settings_repository import JsonSettingsRepository

import dicom_xml as dx
from conftest import write_file


class FakeNetwork:
    """Записывает отправленные файлы, для failing выбрасывает ошибку"""

    def __init__(self, events, failing=()):
        self.events = events
        self.failing = set(failing)

    def store(self, node, dicom_file):
        self.events.append(('store', dicom_file))
        if dicom_file in self.failing:
            raise StoreFailedError(f"Unable to store DICOM file '{dicom_file}'. Exitcode 1", exit_code=1)
        return StoreResponse(exit_code=0, display_text='Successfully')


def _study(uid, files):
    series = DicomSeries(series_instance_uid=uid + '.1')
    for path in files:
        series.add_image(DicomImage(series_instance_uid=series.series_instance_uid,
                                    study_instance_uid=uid, dicom_file_url=path))
    return DicomStudy(study_instance_uid=uid, series=[series])


@pytest.fixture
def settings_repo(tmp_path):
    return JsonSettingsRepository(app_home=str(tmp_path / 'home'))


class TestCollectStudies:
    def test_reads_dicomdir(self, runner, cache, settings_repo, tmp_path):
        folder = tmp_path / 'cd'
        write_file(folder / 'DICOMDIR')
        runner.results['dcm2xml'] = ProcessResult(exit_code=0, stdout=dx.dicomdir([
            dx.patient('P1'), dx.study('1.2.3'), dx.series('1.2.3.4'), dx.image('1', 'DICOM\\IMG1'),
        ]))
        use_case = CollectStudiesUseCase(DicomXmlReader(runner, cache), settings_repo)

        studies = use_case.execute(str(folder))

        assert len(studies) == 1
        assert studies[0].series[0].images[0].dicom_file_url == f'{folder}/DICOM/IMG1'
        assert len(runner.calls) == 1
        assert settings_repo.reload().import_options.last_used_import_folder == str(folder)

    def test_reads_loose_files_and_collects_errors(self, runner, cache, tmp_path):
        folder = tmp_path / 'usb'
        for name in ['a.dicom', 'b.dicom', 'broken.dicom']:
            write_file(folder / name)

        def dcm2xml(call):
            name = os.path.basename(call['args'][-1])
            if name == 'broken.dicom':
                return ProcessResult(exit_code=1, stderr='E: not a DICOM file')
            number = '1' if name == 'a.dicom' else '2'
            return ProcessResult(exit_code=0, stdout=dx.ct_file('P1', '1.2.3', '1.2.3.4', number))
        runner.handlers['dcm2xml'] = dcm2xml
        progress = []
        use_case = CollectStudiesUseCase(DicomXmlReader(runner, cache))

        studies = use_case.execute(str(folder), file_progress=lambda i, n: progress.append((i, n)))

        assert len(studies) == 1
        assert [image.instance_number for image in studies[0].series[0].images] == [1, 2]
        assert len(use_case.errors) == 1
        assert 'broken.dicom' in use_case.errors[0]
        assert progress == [(1, 3), (2, 3), (3, 3)]

    def test_corrupt_archive_is_reported_per_file(self, runner, cache, tmp_path):
        folder = tmp_path / 'usb'
        write_file(folder / 'a.dicomzip', b'not a zip')
        write_file(folder / 'b.dicom')
        runner.results['dcm2xml'] = ProcessResult(
            exit_code=0, stdout=dx.ct_file('P1', '1.2.3', '1.2.3.4', '1'))
        use_case = CollectStudiesUseCase(DicomXmlReader(runner, cache))

        studies = use_case.execute(str(folder))

        assert len(studies) == 1
        assert len(use_case.errors) == 1
        assert 'a.dicomzip' in use_case.errors[0]
        assert [os.path.basename(call['args'][-1]) for call in runner.calls] == ['b.dicom']

    def test_structure_error_propagates(self, runner, cache, tmp_path):
        folder = tmp_path / 'cd'
        write_file(folder / 'DICOMDIR')
        runner.results['dcm2xml'] = ProcessResult(exit_code=0, stdout=dx.dicomdir([
            dx.patient('P1'), dx.series('1.2.3.4'),
        ]))
        with pytest.raises(DicomDirStructureError):
            CollectStudiesUseCase(DicomXmlReader(runner, cache)).execute(str(folder))


class TestStoreStudies:
    def test_images_sent_sorted_by_path(self):
        events = []
        studies = [_study('2.2', ['/cd/B/2', '/cd/B/1']), _study('1.1', ['/cd/A/1'])]

        report = StoreStudiesUseCase(FakeNetwork(events)).execute(studies, DicomNode())

        assert events == [('store', '/cd/A/1'), ('store', '/cd/B/1'), ('store', '/cd/B/2')]
        assert report.succeeded
        assert report.stored == ['/cd/A/1', '/cd/B/1', '/cd/B/2']
        assert report.lines[0] == 'Image /cd/A/1 successfully stored'

    def test_failure_does_not_stop_other_images(self):
        events = []
        progress = []
        network = FakeNetwork(events, failing=['/cd/A/2'])
        studies = [_study('1.1', ['/cd/A/1', '/cd/A/2', '/cd/A/3'])]

        report = StoreStudiesUseCase(network).execute(
            studies, DicomNode(), lambda i, n: progress.append((i, n)))

        assert len(events) == 3
        assert report.failed == ['/cd/A/2']
        assert not report.succeeded
        assert report.lines[1].startswith('Storing image /cd/A/2 failed:')
        assert progress == [(1, 3), (2, 3), (3, 3)]

    @pytest.mark.parametrize('mode, expected', [
        (AnnouncementMode.BEFORE_STORING_IMAGES, ['announce', 'store']),
        (AnnouncementMode.AFTER_STORING_IMAGES, ['store', 'announce']),
        (AnnouncementMode.NO_ANNOUNCEMENT, ['store']),
    ])
    def test_announcement_mode(self, mode, expected):
        events = []
        fhir_client = MagicMock()
        fhir_client.announce_study.side_effect = lambda study: events.append(('announce', study))

        StoreStudiesUseCase(FakeNetwork(events), fhir_client, mode).execute(
            [_study('1.1', ['/cd/A/1'])], DicomNode())

        assert [event[0] for event in events] == expected

    @patch('study_importer.infrastructure.fhir_client.requests.request')
    def test_unreachable_fhir_server_does_not_stop_storing(self, mock_request):
        mock_request.side_effect = requests.ConnectionError('connection refused')
        events = []
        fhir_client = FhirClient(FhirConnectionOptions(base_url='http://fhir'))
        use_case = StoreStudiesUseCase(FakeNetwork(events), fhir_client,
                                       AnnouncementMode.BEFORE_STORING_IMAGES)

        report = use_case.execute([_study('1.1', ['/cd/A/1', '/cd/A/2'])], DicomNode())

        assert events == [('store', '/cd/A/1'), ('store', '/cd/A/2')]
        assert report.succeeded
        assert report.lines[0].startswith('Study 1.1 announcement failed:')


class TestPreview:
    def test_missing_image_gives_placeholder(self):
        converter = MagicMock()
        PreviewUseCase(converter).execute(None)
        converter.image_for.assert_called_once_with('', None)

    def test_document(self):
        converter = MagicMock()
        converter.document_for.return_value = b'%PDF'
        image = DicomImage(series_instance_uid='1.2', dicom_file_url='/cd/DOC',
                           directory_record_type='ENCAP DOC')

        assert PreviewUseCase(converter).execute(image) == b'%PDF'
        converter.document_for.assert_called_once_with('1.2', '/cd/DOC')
        converter.image_for.assert_not_called()

    def test_image(self):
        converter = MagicMock()
        image = DicomImage(series_instance_uid='1.2', dicom_file_url='/cd/IMG',
                           directory_record_type='IMAGE')
        PreviewUseCase(converter).execute(image)
        converter.image_for.assert_called_once_with('1.2', '/cd/IMG')
