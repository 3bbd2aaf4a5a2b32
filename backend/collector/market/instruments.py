"""Static instrument lists followed by the collector."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Instrument:
    code: str
    name: str
    exchange_code: str


# Korean master: stock code -> display name (6-character KRX codes)
KOREAN_STOCKS: dict[str, str] = {
    "005930": "삼성전자",
    "000660": "SK하이닉스",
    "373220": "LG에너지솔루션",
    "207940": "삼성바이오로직스",
    "005380": "현대차",
    "000270": "기아",
    "068270": "셀트리온",
    "035420": "NAVER",
    "035720": "카카오",
    "051910": "LG화학",
}

# Starting prices for the development simulator (KRW)
KOREAN_SEED_PRICES: dict[str, float] = {
    "005930": 72000.0,
    "000660": 178000.0,
    "373220": 385000.0,
    "207940": 780000.0,
    "005380": 245000.0,
    "000270": 112000.0,
    "068270": 182000.0,
    "035420": 185000.0,
    "035720": 43000.0,
    "051910": 360000.0,
}

FOREIGN_STOCKS: tuple[Instrument, ...] = (
    Instrument("TSLA", "테슬라", "NAS"),
    Instrument("AAPL", "애플", "NAS"),
    Instrument("NVDA", "엔비디아", "NAS"),
    Instrument("MSFT", "마이크로소프트", "NAS"),
    Instrument("AMZN", "아마존", "NAS"),
    Instrument("GOOG", "구글(알파벳)", "NAS"),
    Instrument("META", "메타(페이스북)", "NAS"),
    Instrument("AMD", "AMD", "NAS"),
    Instrument("NFLX", "넷플릭스", "NAS"),
    Instrument("BRK/B", "버크셔B주", "NYS"),
    Instrument("TSM", "TSMC", "NYS"),
    Instrument("BABA", "알리바바", "NYS"),
    Instrument("NIO", "니오(중국전기차)", "NYS"),
    Instrument("XOM", "엑슨모빌", "NYS"),
    Instrument("KO", "코카콜라", "NYS"),
    Instrument("JPM", "JP모건", "NYS"),
    Instrument("V", "비자", "NYS"),
    Instrument("09988", "알리바바(홍콩)", "HKS"),
    Instrument("09618", "징둥닷컴", "HKS"),
    Instrument("00700", "텐센트", "HKS"),
)

# Currency pairs: code -> display name
CURRENCY_PAIRS: dict[str, str] = {
    "USD/KRW": "US Dollar / Korean Won",
    "JPY/KRW": "Japanese Yen / Korean Won",
    "EUR/USD": "Euro / US Dollar",
}

# Pairs polled over REST; the streamed pair goes through the single-slot holder.
POLLED_PAIRS: tuple[str, ...] = ("USD/KRW", "JPY/KRW")
STREAMED_PAIR = "EUR/USD"


def currency_name(code: str) -> str:
    return CURRENCY_PAIRS.get(code, "Unknown Currency")
