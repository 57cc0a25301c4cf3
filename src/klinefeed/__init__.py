"""Binance USD-M futures kline harvester.

Discovers USDT-quoted futures symbols, backfills new ones, refreshes recent
candles on cron cadences and prunes candles past their retention horizon.
"""

__version__ = "0.1.0"
