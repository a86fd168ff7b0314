"""Импорт DICOM исследований с носителей и из папок с отправкой в PACS через утилиты DCMTK"""

__version__ = "0.1.0"
