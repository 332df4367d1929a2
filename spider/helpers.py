from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, Union

from bs4 import BeautifulSoup
from bs4.element import Tag
from lxml import etree, html as lxml_html

logger = logging.getLogger(__name__)

_JSONP_RE = re.compile(r"^[^(]*\((.*)\)[^)]*$", re.S)


def jsonp_decode(text: str) -> Any:
    """
    Decode a JSONP payload (``callback({...});``). Returns None when the text
    is not wrapped in a call or the payload is not valid JSON.
    """
    if not isinstance(text, str):
        return None
    m = _JSONP_RE.match(text.strip())
    if not m:
        return None
    try:
        return json.loads(m.group(1))
    except ValueError:
        return None


def _render(node: Union[Tag, "etree._Element", str], method: str, argument: str) -> Optional[str]:
    if isinstance(node, str):
        # xpath text()/@attr results
        return node.strip()
    if method == "text":
        text = node.get_text() if isinstance(node, Tag) else node.text_content()
        return text.strip()
    if method == "html":
        if isinstance(node, Tag):
            return node.decode_contents().strip()
        inner = (node.text or "") + "".join(
            etree.tostring(child, encoding="unicode", method="html") for child in node
        )
        return inner.strip()
    if method == "attr":
        value = node.get(argument)
        if isinstance(value, list):
            value = " ".join(value)
        return value.strip() if value is not None else None
    raise ValueError(f"unknown method {method!r} (expected text|html|attr)")


def dom_filter(document: Union[str, BeautifulSoup, Tag], selector: str, method: str = "text", argument: str = "") -> Optional[str]:
    """CSS-select the first match and render it; None instead of raising on a missing node."""
    soup = document if isinstance(document, Tag) else BeautifulSoup(document or "", "lxml")
    node = soup.select_one(selector)
    if node is None:
        return None
    return _render(node, method, argument)


def dom_filter_xpath(document: Union[str, "etree._Element"], expression: str, method: str = "text", argument: str = "") -> Optional[str]:
    """XPath counterpart of ``dom_filter``."""
    try:
        root = document if isinstance(document, etree._Element) else lxml_html.fromstring(document or "<html/>")
        found = root.xpath(expression)
    except (etree.XPathError, etree.ParserError) as e:
        logger.debug("xpath %r failed: %s", expression, e)
        return None
    if isinstance(found, list):
        if not found:
            return None
        found = found[0]
    if not isinstance(found, (str, etree._Element)):
        return str(found)
    return _render(found, method, argument)
