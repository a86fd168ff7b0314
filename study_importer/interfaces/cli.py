import logging
import os
import sys
from dataclasses import replace

import click
from tqdm import tqdm

from study_importer.application.use_cases import (
    CollectStudiesUseCase,
    PreviewUseCase,
    QueryWorklistUseCase,
    StoreStudiesUseCase,
    ValidateToolchainUseCase,
    VerifyNodeUseCase,
)
from study_importer.application.services import OperationJournal, StatisticsService
from study_importer.config.settings import settings
from study_importer.domain.entities import DicomQuery, WorklistQueryDateRange
from study_importer.domain.exceptions import StudyImporterError
from study_importer.infrastructure.dcmtk_converter import DcmtkFileConverter
from study_importer.infrastructure.dcmtk_network import DcmtkNetworkClient
from study_importer.infrastructure.dcmtk_reader import DicomXmlReader
from study_importer.infrastructure.dcmtk_tools import ToolchainValidator
from study_importer.infrastructure.fhir_client import FhirClient
from study_importer.infrastructure.process_runner import ProcessRunner
from study_importer.infrastructure.session_cache import SessionArtifactCache
from study_importer.infrastructure.settings_repository import JsonSettingsRepository


def setup_logging(log_file: str, level: str):
    """Настройка логирования: файл и консоль"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stderr),
        ],
    )


@click.group()
@click.option('--app-home', default=settings.APP_HOME,
              help='Рабочая папка приложения')
@click.option('--bin-path', default=settings.DCMTK_BIN_PATH,
              help='Папка с утилитами DCMTK')
@click.option('--log-level', default=settings.LOG_LEVEL,
              help='Уровень логирования')
@click.pass_context
def cli(ctx, app_home, bin_path, log_level):
    """CLI импорта DICOM исследований и отправки в PACS через DCMTK"""
    os.makedirs(app_home, exist_ok=True)
    setup_logging(os.path.join(app_home, settings.LOG_FILE), log_level)

    # Инициализируем компоненты
    runner = ProcessRunner(bin_path=bin_path)
    cache = SessionArtifactCache(app_home)
    settings_repo = JsonSettingsRepository(app_home)

    ctx.obj = {
        'runner': runner,
        'cache': cache,
        'settings_repo': settings_repo,
        'network': DcmtkNetworkClient(runner, cache),
        'reader': DicomXmlReader(runner, cache),
        'converter': DcmtkFileConverter(runner, cache),
        'journal': OperationJournal(os.path.join(app_home, settings.JOURNAL_FILE_NAME)),
        'stats_service': StatisticsService(cache),
    }


@cli.command('check-tools')
@click.pass_context
def check_tools(ctx):
    """Проверить наличие утилит DCMTK"""
    use_case = ValidateToolchainUseCase(ToolchainValidator(ctx.obj['runner']))
    result = use_case.execute()

    for tool in result.dicom_tools:
        mark = '✅' if tool.status else '❌'
        click.echo(f"{mark} {tool.display_name:<10} {tool.version or ''}")

    ctx.obj['journal'].record(
        'check-tools',
        result.all_available,
        missing=[tool.display_name for tool in result.dicom_tools if not tool.status],
    )
    if not result.all_available:
        sys.exit(1)


@cli.command()
@click.option('--host', default=None, help='Хост DICOM узла')
@click.option('--port', default=None, type=int, help='Порт DICOM узла')
@click.option('--aet', default=None, help='AET узла')
@click.option('--local-aet', default=None, help='Собственный AET')
@click.pass_context
def echo(ctx, host, port, aet, local_aet):
    """Проверить связь с хранилищем (C-ECHO)"""
    dicom = ctx.obj['settings_repo'].read_settings().dicom
    node = dicom.storage.to_node(dicom.local_aet)
    node = replace(
        node,
        hostname=host or node.hostname,
        port=port or node.port,
        aet=aet or node.aet,
        local_aet=local_aet or node.local_aet,
    )

    response = VerifyNodeUseCase(ctx.obj['network']).execute(node)
    ctx.obj['journal'].record(
        'echo', response.exit_code == 0,
        node=node, tool='echoscu', exit_code=response.exit_code,
    )

    click.echo(response.display_text)
    if response.exit_code != 0:
        click.echo(f"❌ C-ECHO завершился с кодом {response.exit_code}")
        sys.exit(1)
    click.echo("✅ C-ECHO выполнен")


@cli.command()
@click.option('--modality', default=None, help='Модальность процедуры')
@click.option('--scheduled-aet', default=None, help='AET станции процедуры')
@click.option('--date', 'scheduled_date', default=None,
              type=click.Choice([item.value for item in WorklistQueryDateRange]),
              help='Дата процедуры')
@click.pass_context
def find(ctx, modality, scheduled_aet, scheduled_date):
    """Запросить worklist (C-FIND)"""
    dicom = ctx.obj['settings_repo'].read_settings().dicom
    node = dicom.worklist.to_worklist_node(dicom.local_aet)
    saved = node.query
    node = replace(node, query=DicomQuery(
        scheduled_modality=modality or saved.scheduled_modality,
        scheduled_aet=scheduled_aet or saved.scheduled_aet,
        scheduled_date=WorklistQueryDateRange(scheduled_date) if scheduled_date else saved.scheduled_date,
    ))

    try:
        response = QueryWorklistUseCase(ctx.obj['network']).execute(node)
    except StudyImporterError as e:
        click.echo(f"❌ {e}")
        sys.exit(1)

    ctx.obj['journal'].record(
        'find', response.exit_code == 0,
        node=node, tool='findscu', exit_code=response.exit_code,
        entries=len(response.entries),
    )

    if response.exit_code != 0:
        click.echo(response.display_text)
        click.echo(f"❌ C-FIND завершился с кодом {response.exit_code}")
        sys.exit(1)

    click.echo(f"📋 Найдено {len(response.entries)} записей:")
    click.echo("-" * 80)
    for entry in response.entries:
        click.echo(f"{entry.patient_id or '-'}  {entry.patient_display_name or '-'}  "
                   f"{entry.scheduled_date or ''} {entry.scheduled_time or ''}  "
                   f"{entry.accession_number or ''}  {entry.study_description or ''}")


def _collect(ctx, folder):
    """Прочитать исследования папки с индикатором прогресса"""
    use_case = CollectStudiesUseCase(ctx.obj['reader'], ctx.obj['settings_repo'])
    with tqdm(desc="Чтение", unit="файл") as bar:
        def on_file(index, total):
            bar.total = total
            bar.update(1)

        def on_record(patients, studies, series):
            bar.set_postfix(patients=patients, studies=studies, series=series)

        studies = use_case.execute(folder, progress=on_record, file_progress=on_file)

    for error in use_case.errors:
        click.echo(f"⚠️  {error}")
    return studies


@cli.command()
@click.argument('folder', type=click.Path(exists=True, file_okay=False))
@click.pass_context
def collect(ctx, folder):
    """Показать исследования папки или носителя"""
    try:
        studies = _collect(ctx, folder)
    except StudyImporterError as e:
        click.echo(f"❌ {e}")
        sys.exit(1)

    ctx.obj['journal'].record('collect', True, folder=folder, studies=len(studies))

    click.echo(f"📋 Найдено {len(studies)} исследований:")
    click.echo("-" * 80)
    for study in studies:
        patient = study.patient
        click.echo(f"Исследование: {study.study_instance_uid}  {study.study_description or ''}")
        if patient:
            click.echo(f"  Пациент: {patient.patient_id}  {patient.patient_display_name or ''}")
        for series in study.series:
            click.echo(f"  Серия: {series.series_instance_uid}  {series.modality or ''}  "
                       f"{series.series_description or ''}  ({len(series.images)} изобр.)")


@cli.command()
@click.argument('folder', type=click.Path(exists=True, file_okay=False))
@click.option('--study', 'study_uids', multiple=True,
              help='StudyInstanceUID для отправки (по умолчанию все)')
@click.pass_context
def store(ctx, folder, study_uids):
    """Отправить исследования папки в хранилище (C-STORE)"""
    user_settings = ctx.obj['settings_repo'].read_settings()
    try:
        studies = _collect(ctx, folder)
    except StudyImporterError as e:
        click.echo(f"❌ {e}")
        sys.exit(1)

    if study_uids:
        studies = [study for study in studies if study.study_instance_uid in study_uids]

    announcement = user_settings.import_options.announcement if user_settings.import_options else None
    fhir_client = FhirClient(announcement) if announcement and announcement.base_url else None
    use_case = StoreStudiesUseCase(
        ctx.obj['network'],
        fhir_client,
        announcement.mode if announcement else None,
    )

    node = user_settings.dicom.storage.to_node(user_settings.dicom.local_aet)
    with tqdm(desc="Отправка", unit="изобр.") as bar:
        def on_progress(count, total):
            bar.total = total
            bar.update(1)

        report = use_case.execute(studies, node, on_progress)

    for line in report.lines:
        click.echo(line)

    ctx.obj['journal'].record(
        'store', report.succeeded,
        node=node, files=report.failed,
        folder=folder, stored=len(report.stored),
    )

    if report.succeeded:
        click.echo(f"✅ Отправлено {len(report.stored)} файлов")
    else:
        click.echo(f"❌ Не отправлено {len(report.failed)} файлов")
        sys.exit(1)


@cli.command()
@click.argument('folder', type=click.Path(exists=True, file_okay=False))
@click.option('--output', required=True, type=click.Path(file_okay=False),
              help='Папка для превью')
@click.pass_context
def preview(ctx, folder, output):
    """Сохранить превью каждой серии (PNG или PDF)"""
    try:
        studies = _collect(ctx, folder)
    except StudyImporterError as e:
        click.echo(f"❌ {e}")
        sys.exit(1)

    os.makedirs(output, exist_ok=True)
    use_case = PreviewUseCase(ctx.obj['converter'])
    for study in studies:
        for series in study.series:
            image = series.preview_image
            extension = 'pdf' if image is not None and image.is_document else 'png'
            target = os.path.join(output, f"{series.series_instance_uid}.{extension}")
            try:
                data = use_case.execute(image)
            except StudyImporterError as e:
                click.echo(f"❌ {e}")
                continue
            with open(target, 'wb') as f:
                f.write(data)
            click.echo(f"✅ {target}")


@cli.group()
def session():
    """Папка сессии"""


@session.command('stats')
@click.pass_context
def session_stats(ctx):
    """Показать статистику папки сессии"""
    stats = ctx.obj['stats_service'].get_session_statistics()
    click.echo("📁 Папка сессии:")
    click.echo(f"  Путь: {stats['session_path']}")
    click.echo(f"  Количество файлов: {stats['total_files']}")
    click.echo(f"  Общий размер: {stats['session_size_mb']:.2f} MB")


@session.command('purge')
@click.option('--yes', is_flag=True, help='Не спрашивать подтверждение')
@click.pass_context
def session_purge(ctx, yes):
    """Удалить папку сессии"""
    cache = ctx.obj['cache']
    if yes or click.confirm(f"Удалить папку сессии {cache.session_path()}?"):
        removed = cache.purge()
        ctx.obj['journal'].record('session-purge', True, removed=removed)
        click.echo(f"✅ Удалено файлов: {removed}")


@cli.group()
def journal():
    """Журнал операций"""


@journal.command('show')
@click.option('--operation', default=None, help='Только записи этой операции')
@click.option('--limit', default=20, type=int, help='Количество последних записей')
@click.pass_context
def journal_show(ctx, operation, limit):
    """Показать последние записи журнала операций"""
    entries = ctx.obj['journal'].read_entries(operation=operation, limit=limit)
    if not entries:
        click.echo("📋 Журнал пуст")
        return

    for entry in entries:
        mark = '✅' if entry.get('status') == 'success' else '❌'
        line = f"{mark} {entry.get('timestamp', '')}  {entry.get('operation', '')}"
        node = entry.get('node')
        if node:
            line += f"  {node.get('aet')}@{node.get('hostname')}:{node.get('port')}"
        if 'exit_code' in entry:
            line += f"  {entry.get('tool')} exit={entry['exit_code']}"
        if entry.get('files'):
            line += f"  файлов с ошибкой: {len(entry['files'])}"
        click.echo(line)


@cli.group('settings')
def settings_group():
    """Пользовательские настройки"""


@settings_group.command('show')
@click.pass_context
def settings_show(ctx):
    """Показать файл настроек"""
    try:
        user_settings = ctx.obj['settings_repo'].read_settings()
    except StudyImporterError as e:
        click.echo(f"❌ {e}")
        sys.exit(1)
    click.echo(user_settings.to_json())


if __name__ == '__main__':
    cli()
