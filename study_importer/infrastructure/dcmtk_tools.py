import logging
import re
from typing import Optional, Sequence

from study_importer.domain.entities import DicomTool, ToolchainValidationResult
from study_importer.domain.repositories import IProcessRunner


logger = logging.getLogger(__name__)

REQUIRED_TOOLS = (
    'findscu',
    'storescu',
    'echoscu',
    'dcmj2pnm',
    'dcm2xml',
    'dcm2pdf',
)

# "$dcmtk: echoscu v3.6.7 2022-04-22 $"
_VERSION_PATTERN = re.compile(r'(?<=dcmtk: ).*')


def parse_version(tool: str, output: str) -> Optional[str]:
    """Извлечь строку версии из вывода `<tool> --version`"""
    match = _VERSION_PATTERN.search(output or '')
    if match is None:
        return None
    version = match.group(0).replace(tool, '', 1).replace('$', '').strip()
    return version or None


class ToolchainValidator:
    """Проверка наличия и версий утилит DCMTK"""

    def __init__(self, runner: IProcessRunner,
                 tools: Optional[Sequence[str]] = None):
        self.runner = runner
        self.tools = list(tools) if tools is not None else list(REQUIRED_TOOLS)

    def validate_all(self) -> ToolchainValidationResult:
        """
        Проверить утилиты строго по одной, в порядке списка.
        Отсутствующая утилита не прерывает проверку остальных.
        """
        result = ToolchainValidationResult()

        for tool in self.tools:
            logger.debug("Проверка утилиты %s", tool)
            process = self.runner.run(tool, ['--version'])
            dicom_tool = DicomTool(
                display_name=tool,
                version=parse_version(tool, process.stdout) if process.exit_code is not None else None,
                status=process.exit_code == 0,
            )
            if not dicom_tool.status:
                logger.warning("Утилита %s недоступна: %s", tool, process.stderr.strip())
            result.dicom_tools.append(dicom_tool)

        return result
