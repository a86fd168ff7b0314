"""Tests for study_importer/infrastructure/process_runner.py."""

import os
import sys
import time

import pytest

from study_importer.infrastructure.process_runner import ProcessRunner


def _python(code):
    return ['-c', code]


@pytest.fixture
def process_runner():
    runner = ProcessRunner(bin_path='', timeout=30)
    yield runner
    runner.shutdown()


class TestRun:
    def test_captures_exit_code_and_output(self, process_runner):
        result = process_runner.run(sys.executable, _python(
            "import sys; print('hello'); print('oops', file=sys.stderr); sys.exit(3)"
        ))
        assert result.exit_code == 3
        assert result.stdout.strip() == 'hello'
        assert result.stderr.strip() == 'oops'
        assert not result.succeeded

    def test_success(self, process_runner):
        result = process_runner.run(sys.executable, _python("print('ok')"))
        assert result.exit_code == 0
        assert result.succeeded

    def test_missing_executable_is_reported_not_raised(self, process_runner):
        result = process_runner.run('no-such-dcmtk-tool-4242', ['--version'])
        assert result.exit_code is None
        assert 'no-such-dcmtk-tool-4242' in result.stderr

    def test_runs_in_working_directory(self, process_runner, tmp_path):
        result = process_runner.run(sys.executable, _python("import os; print(os.getcwd())"),
                                    cwd=str(tmp_path))
        assert os.path.samefile(result.stdout.strip(), str(tmp_path))

    def test_output_over_limit_is_failure(self, process_runner):
        result = process_runner.run(sys.executable, _python("print('x' * 1000)"), max_output=100)
        assert result.exit_code is None
        assert 'exceeded maximum of 100 bytes' in result.stderr

    def test_stderr_over_limit_is_failure(self, process_runner):
        result = process_runner.run(sys.executable, _python(
            "import sys; sys.stderr.write('e' * 1000)"
        ), max_output=100)
        assert result.exit_code is None
        assert 'stderr exceeded maximum of 100 bytes' in result.stderr

    def test_endless_output_is_stopped_at_limit(self, process_runner):
        started = time.monotonic()
        result = process_runner.run(sys.executable, _python(
            "import sys\nwhile True: sys.stdout.write('x' * 65536)"
        ), max_output=1000)
        assert result.exit_code is None
        assert result.stdout == ''
        assert 'stdout exceeded maximum of 1000 bytes' in result.stderr
        assert time.monotonic() - started < 20

    def test_timeout_kills_process(self):
        runner = ProcessRunner(bin_path='', timeout=0.5)
        try:
            result = runner.run(sys.executable, _python("import time; time.sleep(30)"))
        finally:
            runner.shutdown()
        assert result.exit_code is None
        assert 'timed out' in result.stderr

    def test_submit_returns_future(self, process_runner):
        future = process_runner.submit(sys.executable, _python("print('async')"))
        result = future.result(timeout=30)
        assert result.exit_code == 0
        assert result.stdout.strip() == 'async'


class TestResolveExecutable:
    def test_bin_path_is_prepended(self):
        runner = ProcessRunner(bin_path=os.path.join('opt', 'dcmtk', 'bin'))
        try:
            assert runner.resolve_executable('echoscu') == os.path.join('opt', 'dcmtk', 'bin', 'echoscu')
        finally:
            runner.shutdown()

    def test_empty_bin_path_uses_search_path(self):
        runner = ProcessRunner(bin_path='')
        try:
            assert runner.resolve_executable('echoscu') == 'echoscu'
        finally:
            runner.shutdown()
