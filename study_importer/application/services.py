import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from study_importer.domain.entities import DicomNode


logger = logging.getLogger(__name__)


def _node_summary(node: DicomNode) -> Dict[str, Any]:
    return {
        'aet': node.aet,
        'local_aet': node.local_aet,
        'hostname': node.hostname,
        'port': node.port,
    }


class OperationJournal:
    """
    Журнал операций пользователя: одна JSON строка на операцию.

    Кроме статуса фиксируются DICOM узел, утилита DCMTK, ее код завершения
    и файлы, которые не удалось обработать.
    """

    def __init__(self, journal_file: str = "operations.log"):
        self.journal_file = Path(journal_file)
        self.journal_file.parent.mkdir(parents=True, exist_ok=True)

    def record(self, operation: str, succeeded: bool,
               node: Optional[DicomNode] = None,
               tool: Optional[str] = None,
               exit_code: Optional[int] = None,
               files: Optional[List[str]] = None,
               **details) -> Dict[str, Any]:
        """Записать операцию в журнал"""
        entry: Dict[str, Any] = {
            'timestamp': datetime.now().isoformat(),
            'operation': operation,
            'status': 'success' if succeeded else 'failed',
        }
        if node is not None:
            entry['node'] = _node_summary(node)
        if tool is not None:
            entry['tool'] = tool
            entry['exit_code'] = exit_code
        if files:
            entry['files'] = list(files)
        if details:
            entry['details'] = details

        try:
            with open(self.journal_file, 'a', encoding='utf-8') as f:
                f.write(json.dumps(entry, default=str, ensure_ascii=False) + '\n')
        except OSError as e:
            logger.error("Ошибка при записи в журнал %s: %s", self.journal_file, e)
        return entry

    def read_entries(self, operation: Optional[str] = None,
                     limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Прочитать записи журнала (последние limit), поврежденные строки пропускаются"""
        if not self.journal_file.exists():
            return []

        entries = []
        with open(self.journal_file, encoding='utf-8') as f:
            for number, line in enumerate(f, 1):
                if not line.strip():
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Строка %s журнала %s повреждена", number, self.journal_file)
                    continue
                if operation is None or entry.get('operation') == operation:
                    entries.append(entry)
        return entries[-limit:] if limit else entries


class StatisticsService:
    """Статистика папки сессии"""

    def __init__(self, cache):
        self.cache = cache

    def get_session_statistics(self) -> Dict[str, Any]:
        """Получить статистику кэша сессии"""
        size = self.cache.size()
        return {
            'session_path': self.cache.session_path(),
            'total_files': len(self.cache.list_artifacts()),
            'session_size_bytes': size,
            'session_size_mb': size / (1024 * 1024)
        }
