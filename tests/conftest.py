import os
from typing import Callable, Dict, List, Optional

import pytest

from study_importer.domain.entities import ProcessResult
from study_importer.domain.repositories import IProcessRunner
from study_importer.infrastructure.session_cache import SessionArtifactCache


class FakeProcessRunner(IProcessRunner):
    """Записывает вызовы и возвращает заранее заданные результаты"""

    def __init__(self):
        self.calls: List[dict] = []
        self.results: Dict[str, ProcessResult] = {}
        self.handlers: Dict[str, Callable] = {}

    def run(self, executable, args, cwd=None, max_output=None) -> ProcessResult:
        call = {'executable': executable, 'args': list(args), 'cwd': cwd, 'max_output': max_output}
        self.calls.append(call)
        if executable in self.handlers:
            return self.handlers[executable](call)
        return self.results.get(executable, ProcessResult(exit_code=0))

    def calls_to(self, executable: str) -> List[dict]:
        return [call for call in self.calls if call['executable'] == executable]


@pytest.fixture
def runner():
    return FakeProcessRunner()


@pytest.fixture
def cache(tmp_path):
    return SessionArtifactCache(app_home=str(tmp_path / 'home'))


def writes_target(content: bytes, exit_code: int = 0, stdout: str = ''):
    """Обработчик для утилиты, которая пишет последний аргумент как выходной файл"""
    def handler(call):
        with open(call['args'][-1], 'wb') as f:
            f.write(content)
        return ProcessResult(exit_code=exit_code, stdout=stdout)
    return handler


def write_file(path, content: bytes = b'DICM') -> str:
    os.makedirs(os.path.dirname(str(path)), exist_ok=True)
    with open(path, 'wb') as f:
        f.write(content)
    return str(path)
