"""Разбор XML, который выдают утилиты DCMTK (dcm2xml, findscu -Xs)"""

import logging
import xml.etree.ElementTree as ET
from typing import Iterable, List, Optional


logger = logging.getLogger(__name__)


def local_name(tag: str) -> str:
    """Имя элемента без пространства имен"""
    return tag.rsplit('}', 1)[-1] if tag.startswith('{') else tag


def children(node: ET.Element, name: str) -> List[ET.Element]:
    return [child for child in node if local_name(child.tag) == name]


def select(node: ET.Element, path: Iterable[str]) -> List[ET.Element]:
    """Выбрать узлы по пути из имен элементов (аналог простого XPath)"""
    current = [node]
    for name in path:
        current = [child for parent in current for child in children(parent, name)]
    return current


def parse_xml(xml: str) -> Optional[ET.Element]:
    """Разобрать XML. Для поврежденного документа возвращает None"""
    if not xml or not xml.strip():
        return None
    try:
        return ET.fromstring(xml)
    except ET.ParseError as e:
        logger.warning("Некорректный XML: %s", e)
        return None


def find_element(node: ET.Element, tag: str, kind: str = 'element') -> Optional[ET.Element]:
    """Найти дочерний element/sequence с тегом вида '0010,0020'"""
    tag = tag.lower()
    for child in children(node, kind):
        if tag in (child.get('tag') or '').lower():
            return child
    return None


def get_tag_value(node: ET.Element, tag: str) -> Optional[str]:
    """Значение дочернего элемента с тегом; None если тега нет или он пуст"""
    element = find_element(node, tag)
    if element is None or not element.text:
        return None
    return element.text


def first_item(node: ET.Element, tag: str) -> Optional[ET.Element]:
    """Первый item последовательности с тегом"""
    sequence = find_element(node, tag, kind='sequence')
    if sequence is None:
        return None
    items = children(sequence, 'item')
    return items[0] if items else None
