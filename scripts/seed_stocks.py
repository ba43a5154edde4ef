# scripts/seed_stocks.py
"""
Populate the stocks reference table with a starter universe so the screener,
autocomplete and snapshot fallback have something to work with.

    python -m scripts.seed_stocks
"""
import logging

from config.logging_config import configure_logging
from config.settings import load_settings
from database import create_db_engine, create_session_factory, init_db
from models.stock import Stock
from services.market_data import synthetic
from utils.common_helpers import utcnow

logger = logging.getLogger(__name__)

# ticker: (market cap, trailing P/E, dividend yield as a fraction)
SEED_FUNDAMENTALS = {
    "AAPL": (2.75e12, 28.9, 0.0055),
    "MSFT": (2.81e12, 36.4, 0.0079),
    "GOOGL": (1.78e12, 24.6, None),
    "AMZN": (1.51e12, 52.1, None),
    "NVDA": (2.16e12, 72.3, 0.0002),
    "META": (1.24e12, 32.8, None),
    "TSLA": (7.9e11, 61.5, None),
    "V": (5.4e11, 30.2, 0.0068),
    "JPM": (4.55e11, 11.7, 0.0265),
    "JNJ": (3.9e11, 15.2, 0.0279),
    "WMT": (4.46e11, 29.1, 0.0138),
    "PG": (3.72e11, 25.4, 0.0238),
    "UNH": (4.48e11, 21.9, 0.0155),
    "HD": (3.63e11, 23.7, 0.0246),
    "BAC": (3.05e11, 12.1, 0.0248),
    "XOM": (4.57e11, 13.9, 0.0330),
    "CVX": (2.95e11, 14.8, 0.0411),
    "LLY": (7.46e11, 112.4, 0.0066),
    "ABBV": (2.93e11, 49.6, 0.0374),
    "NFLX": (2.09e11, 44.8, None),
    "ADBE": (2.65e11, 48.2, None),
    "BLK": (1.07e11, 20.6, 0.0281),
    "AXP": (1.14e11, 17.9, 0.0151),
}


def seed(session_factory) -> int:
    now = utcnow()
    written = 0
    with session_factory() as db:
        for ticker, (market_cap, pe, dividend_yield) in SEED_FUNDAMENTALS.items():
            quote = synthetic.quote(ticker)
            profile = synthetic.company_profile(ticker)
            stock = db.get(Stock, ticker) or Stock(ticker=ticker)
            stock.name = profile.name
            stock.sector = profile.sector
            stock.industry = stock.industry or profile.industry
            stock.current_price = quote.price
            stock.day_change = quote.change
            stock.day_change_percent = quote.change_percent
            stock.volume = quote.volume
            stock.week52_high = quote.week52_high
            stock.week52_low = quote.week52_low
            stock.market_cap = market_cap
            stock.pe_ratio = pe
            stock.dividend_yield = dividend_yield
            stock.last_updated = now
            db.add(stock)
            written += 1
        db.commit()
    return written


def main() -> None:
    settings = load_settings()
    configure_logging(settings)
    engine = create_db_engine(settings)
    init_db(engine)
    count = seed(create_session_factory(engine))
    logger.info("seeded stocks count=%d", count)
    engine.dispose()


if __name__ == "__main__":
    main()
