import re
import unicodedata
from dataclasses import dataclass

# "<cantidad> <producto> talla <talla>", p. ej. "3 camisetas talla M"
_ORDER_LINE_PATTERN = re.compile(
    r"(?P<qty>\d+)\s+(?P<name>[a-záéíóúüñ\s]+?)\s+talla\s+(?P<size>\w+)",
    re.IGNORECASE,
)

FORMAT_HINT = "cantidad producto talla talla_producto"


@dataclass
class ParsedLine:
    raw: str
    quantity: int
    product: str
    size: str


def normalize(text: str) -> str:
    text = text.lower()
    text = unicodedata.normalize("NFKD", text)
    text = "".join(char for char in text if not unicodedata.combining(char))
    text = re.sub(r"[-_]", " ", text)
    text = re.sub(r"[^\w\s]", " ", text)
    text = re.sub(r"\s+", " ", text).strip()
    return text


def split_lines(text: str) -> list[str]:
    return [line.strip() for line in (text or "").split("\n") if line.strip()]


def parse_order_line(line: str) -> ParsedLine | None:
    match = _ORDER_LINE_PATTERN.search(line or "")
    if not match:
        return None
    name = re.sub(r"\s+", " ", match.group("name")).strip()
    if not name:
        return None
    return ParsedLine(
        raw=line,
        quantity=int(match.group("qty")),
        product=name,
        size=match.group("size").strip(),
    )
