from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, TypeVar


T = TypeVar('T')


class SerialTaskQueue:
    """Очередь задач с одним исполнителем: задачи выполняются по одной в порядке поступления"""

    def __init__(self, name: str = 'serial-queue'):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)

    def enqueue(self, task: Callable[[], T]) -> 'Future[T]':
        """Поставить задачу в очередь. Ошибка задачи передается через Future"""
        return self._executor.submit(task)

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
