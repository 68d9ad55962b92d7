"""
Primary source-text provider and reading formatting.

Readings come from the daily liturgy API; the reading block of a script is
composed here with the fixed liturgical opening/closing formula rather than
written by the model.
"""
import re
import httpx
import logging
from typing import Optional

from .errors import SourceFetchError
from .models import SourceCategory, SourceText
from .settings import LITURGY_API_BASE

logger = logging.getLogger(__name__)

BOOK_NAMES = {
    "Mt": "Mateus", "Mc": "Marcos", "Lc": "Lucas", "Jo": "João",
    "Gn": "Gênesis", "Gen": "Gênesis", "Ex": "Êxodo", "Lv": "Levítico", "Nm": "Números", "Dt": "Deuteronômio",
    "Sl": "Salmos", "Is": "Isaías", "Jr": "Jeremias", "Ez": "Ezequiel", "Dn": "Daniel",
    "Os": "Oséias", "Jl": "Joel", "Am": "Amós", "Jn": "Jonas", "Mq": "Miquéias",
    "Sf": "Sofonias", "Zc": "Zacarias", "Ml": "Malaquias",
    "At": "Atos dos Apóstolos", "Rm": "Romanos", "1Cor": "Primeira Coríntios", "2Cor": "Segunda Coríntios",
    "Gl": "Gálatas", "Ef": "Efésios", "Fp": "Filipenses", "Cl": "Colossenses",
    "1Ts": "Primeira Tessalonicenses", "2Ts": "Segunda Tessalonicenses",
    "1Tm": "Primeira Timóteo", "2Tm": "Segunda Timóteo", "Hb": "Hebreus", "Tg": "Tiago",
    "1Pd": "Primeira Pedro", "2Pd": "Segunda Pedro", "1Jo": "Primeira João", "Ap": "Apocalipse",
    "1Rs": "Primeiro Reis", "2Rs": "Segundo Reis",
}
GOSPELS = ("Mateus", "Marcos", "Lucas", "João")
CLOSING = "Palavra da Salvação. Glória a vós, Senhor!"
_REFERENCE_RE = re.compile(r"^([1-3]?\s?[A-Za-zÀ-ú.]+)\s+(\d{1,3})\s*[,:]\s*([0-9\-–\s,]+)")


def clean_reading_text(text: Optional[str]) -> str:
    """Collapse line breaks and strip verse numbers."""
    if not text:
        return ""
    clean = re.sub(r"[\r\n]+", " ", text).strip()
    # "12Jesus" -> "Jesus"
    clean = re.sub(r"\b\d{1,3}(?=[A-Za-zÀ-ú])", "", clean)
    # "5 quando" / "6 'Senhor" -> "quando" / "'Senhor"
    clean = re.sub(r"\b\d{1,3}\s+(?=[\"'A-Za-zÀ-ú])", "", clean)
    # "1. Naquele" -> "Naquele"
    clean = re.sub(r"\b\d{1,3}\.\s+", "", clean)
    return re.sub(r"\s{2,}", " ", clean).strip()


def format_liturgical_reading(text: str, reference: str) -> str:
    if not text:
        return ""
    body = clean_reading_text(text)
    match = _REFERENCE_RE.match(reference.strip())
    if match:
        book = match.group(1).strip()
        chapter = match.group(2).strip()
        verses = re.sub(r"\s*[-–]\s*", " a ", match.group(3).strip().rstrip(","))
        book = BOOK_NAMES.get(book.replace(".", "").replace(" ", ""), book)
        prefix = "São " if book in GOSPELS else ""
        opening = (f"Proclamação do Evangelho de Jesus Cristo, segundo {prefix}{book}, "
                   f"Capítulo {chapter}, versículos {verses}. Glória a vós, Senhor!")
    else:
        logger.warning(f"Could not parse reference {reference!r}, using generic opening")
        opening = "Proclamação do Evangelho de Jesus Cristo. Glória a vós, Senhor!"
    return f"{opening} {body} {CLOSING}"


async def fetch_from_api(date: str, category: SourceCategory, transport: Optional[httpx.AsyncBaseTransport] = None) -> SourceText:
    category = SourceCategory(category)
    logger.info(f"Fetching liturgy from API for {date} ({category.value})")
    try:
        async with httpx.AsyncClient(timeout=20, transport=transport) as client:
            response = await client.get(f"{LITURGY_API_BASE}/", params={"date": date})
            response.raise_for_status()
            data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Primary liturgy fetch failed: {e!r}")
        raise SourceFetchError(f"Liturgy API error: {e}") from e

    if not isinstance(data, dict):
        raise SourceFetchError(f"Liturgy API returned an unexpected body for {date}")
    today = data.get("today") or {}
    readings = today.get("readings") if isinstance(today, dict) else None
    reading = readings.get(category.value) if isinstance(readings, dict) else None
    if not isinstance(reading, dict):
        raise SourceFetchError(f"Liturgy API has no {category.value} reading for {date}")
    text = clean_reading_text(reading.get("text"))
    if not text:
        raise SourceFetchError(f"Liturgy API has no {category.value} text for {date}")
    return SourceText(
        reference=reading.get("referencia") or reading.get("title") or "",
        text=text,
        title=today.get("entry_title") or "Liturgia Diária",
        provider="api",
    )
