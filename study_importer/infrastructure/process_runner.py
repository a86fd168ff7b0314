import logging
import os
import subprocess
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional, Sequence, Set

from study_importer.config.settings import settings
from study_importer.domain.entities import ProcessResult
from study_importer.domain.repositories import IProcessRunner


logger = logging.getLogger(__name__)

_USE_DEFAULT = object()

CHUNK_SIZE = 64 * 1024


class ProcessRunner(IProcessRunner):
    """Запуск утилит DCMTK в дочерних процессах

    Ошибки запуска, таймауты и переполнение вывода не выбрасываются,
    а возвращаются как ProcessResult с exit_code None.
    """

    def __init__(self, bin_path: Optional[str] = None,
                 timeout=_USE_DEFAULT,
                 max_output: Optional[int] = None,
                 max_workers: int = 4):
        self.bin_path = settings.DCMTK_BIN_PATH if bin_path is None else bin_path
        self.timeout = settings.PROCESS_TIMEOUT if timeout is _USE_DEFAULT else timeout
        self.max_output = max_output or settings.MAX_OUTPUT_SIZE
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix="dcmtk")
        self._running: Set[subprocess.Popen] = set()
        self._lock = threading.Lock()

    def resolve_executable(self, executable: str) -> str:
        """Получить путь к утилите с учетом папки DCMTK"""
        if self.bin_path:
            return os.path.join(self.bin_path, executable)
        return executable

    def run(self, executable: str, args: Sequence[str],
            cwd: Optional[str] = None,
            max_output: Optional[int] = None) -> ProcessResult:
        """Запустить утилиту и дождаться ее завершения"""
        command = [self.resolve_executable(executable), *[str(a) for a in args]]
        limit = max_output or self.max_output
        logger.info("Запуск: %s", " ".join(command))

        try:
            process = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
            )
        except OSError as e:
            logger.warning("Не удалось запустить %s: %s", executable, e)
            return ProcessResult(
                exit_code=None,
                stderr=f"Unable to launch '{executable}': {e}",
            )

        with self._lock:
            self._running.add(process)

        overflow = threading.Event()

        def on_overflow():
            overflow.set()
            process.kill()

        readers = [
            _OutputReader(process.stdout, limit, on_overflow),
            _OutputReader(process.stderr, limit, on_overflow),
        ]
        for reader in readers:
            reader.start()

        timed_out = False
        try:
            process.wait(timeout=self.timeout or None)
        except subprocess.TimeoutExpired:
            timed_out = True
            process.kill()
            process.wait()
        finally:
            for reader in readers:
                reader.join()
            process.stdout.close()
            process.stderr.close()
            with self._lock:
                self._running.discard(process)

        stdout_reader, stderr_reader = readers
        stdout, stderr = stdout_reader.data(), stderr_reader.data()

        if timed_out:
            logger.warning("%s прерван по таймауту %s с", executable, self.timeout)
            return ProcessResult(
                exit_code=None,
                stdout=_decode(stdout),
                stderr=f"'{executable}' timed out after {self.timeout} seconds",
            )

        if overflow.is_set():
            stream = 'stdout' if stdout_reader.overflowed else 'stderr'
            logger.warning("Вывод %s (%s) превысил %s байт, процесс остановлен",
                           executable, stream, limit)
            return ProcessResult(
                exit_code=None,
                stderr=f"'{executable}' {stream} exceeded maximum of {limit} bytes",
            )

        exit_code = process.returncode
        logger.debug("%s завершился с кодом %s", executable, exit_code)

        # Отрицательный код - процесс убит сигналом
        if exit_code is not None and exit_code < 0:
            return ProcessResult(
                exit_code=None,
                stdout=_decode(stdout),
                stderr=_decode(stderr) or f"'{executable}' was killed by signal {-exit_code}",
            )

        return ProcessResult(
            exit_code=exit_code,
            stdout=_decode(stdout),
            stderr=_decode(stderr),
        )

    def submit(self, executable: str, args: Sequence[str],
               cwd: Optional[str] = None,
               max_output: Optional[int] = None) -> Future:
        """Запустить утилиту в рабочем потоке"""
        return self._executor.submit(self.run, executable, args, cwd, max_output)

    def cancel_all(self) -> int:
        """Завершить все запущенные процессы"""
        with self._lock:
            running = list(self._running)
        for process in running:
            process.kill()
        return len(running)

    def shutdown(self):
        self._executor.shutdown(wait=True)


def _decode(data: Optional[bytes]) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


class _OutputReader(threading.Thread):
    """Читает поток дочернего процесса кусками до limit байт"""

    def __init__(self, stream, limit: int, on_overflow):
        super().__init__(daemon=True)
        self.stream = stream
        self.limit = limit
        self.on_overflow = on_overflow
        self.overflowed = False
        self._chunks = []
        self._size = 0

    def run(self):
        while True:
            chunk = self.stream.read1(CHUNK_SIZE)
            if not chunk:
                return
            self._size += len(chunk)
            if self._size > self.limit:
                self.overflowed = True
                self._chunks = []
                self.on_overflow()
                return
            self._chunks.append(chunk)

    def data(self) -> bytes:
        return b"".join(self._chunks)
