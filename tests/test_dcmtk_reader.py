"""Tests for study_importer/infrastructure/dcmtk_reader.py."""

import os
import zipfile

import pytest

from study_importer.domain.entities import DicomFile, ProcessResult
from study_importer.domain.exceptions import DicomDirReadError
from study_importer.infrastructure.dcmtk_reader import (
    DicomXmlReader,
    collect_dicom_files,
    exists_dicomdir,
)

from conftest import write_file


class TestCollectDicomFiles:
    def test_filters_by_extension_and_name(self, tmp_path):
        for name in ['b.dicom', 'a.dicom', 'c.dicomzip', 'preview.dicom', 'notes.txt', 'DICOMDIR']:
            write_file(tmp_path / name)
        os.makedirs(tmp_path / 'nested.dicom')

        files = collect_dicom_files(str(tmp_path))

        assert [os.path.basename(f.file) for f in files] == ['a.dicom', 'b.dicom', 'c.dicomzip']
        assert [f.compressed for f in files] == [False, False, True]

    def test_subfolders_are_not_scanned(self, tmp_path):
        write_file(tmp_path / 'sub' / 'a.dicom')
        assert collect_dicom_files(str(tmp_path)) == []

    def test_missing_folder(self, tmp_path):
        assert collect_dicom_files(str(tmp_path / 'missing')) == []
        assert collect_dicom_files(None) == []


class TestExistsDicomdir:
    def test_detects_file(self, tmp_path):
        assert not exists_dicomdir(str(tmp_path))
        write_file(tmp_path / 'DICOMDIR')
        assert exists_dicomdir(str(tmp_path))

    def test_none(self):
        assert not exists_dicomdir(None)


class TestDicomXmlReader:
    def test_read_dicomdir(self, runner, cache, tmp_path):
        runner.results['dcm2xml'] = ProcessResult(exit_code=0, stdout='<file-format/>')
        reader = DicomXmlReader(runner, cache, max_output=1024)

        response = reader.read_dicomdir(str(tmp_path))

        dicomdir = os.path.join(str(tmp_path), 'DICOMDIR')
        assert response.xml == '<file-format/>'
        assert response.exit_code == 0
        assert runner.calls[0]['args'] == ['--convert-to-utf8', dicomdir]
        assert runner.calls[0]['max_output'] == 1024

    def test_failure_raises(self, runner, cache, tmp_path):
        runner.results['dcm2xml'] = ProcessResult(exit_code=1, stderr='E: no such file')
        reader = DicomXmlReader(runner, cache)

        with pytest.raises(DicomDirReadError) as info:
            reader.read_dicomdir(str(tmp_path))

        assert info.value.exit_code == 1
        assert 'DICOMDIR' in str(info.value)

    def test_launch_failure_raises(self, runner, cache, tmp_path):
        runner.results['dcm2xml'] = ProcessResult(exit_code=None, stderr="Unable to launch 'dcm2xml'")
        with pytest.raises(DicomDirReadError):
            DicomXmlReader(runner, cache).read_dicomdir(str(tmp_path))

    def test_read_plain_file(self, runner, cache, tmp_path):
        source = write_file(tmp_path / 'a.dicom')
        runner.results['dcm2xml'] = ProcessResult(exit_code=0, stdout='<file-format/>')

        response = DicomXmlReader(runner, cache).read_file(DicomFile(source))

        assert response.file == source
        assert runner.calls[0]['args'] == ['--convert-to-utf8', source]

    def test_read_compressed_file(self, runner, cache, tmp_path):
        archive = str(tmp_path / 'a.dicomzip')
        with zipfile.ZipFile(archive, 'w') as zf:
            zf.writestr('a.dicom', b'DICM')
        runner.results['dcm2xml'] = ProcessResult(exit_code=0, stdout='<file-format/>')

        response = DicomXmlReader(runner, cache).read_file(DicomFile(archive, compressed=True))

        assert response.file != archive
        assert os.path.dirname(response.file) == cache.session_path()
        assert runner.calls[0]['args'] == ['--convert-to-utf8', response.file]
