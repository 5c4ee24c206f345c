# dualarb/config.py
import copy
import yaml
from .models import VENUES


class ConfigError(Exception):
    """Raised when config.yaml is missing required values or holds invalid ones."""


DEFAULT_CONFIG = {
    'system': {
        'log_level': 'INFO',
        'interactive': False,
        'dashboard': True,
        'dashboard_refresh_per_second': 2,
        'summary_interval_seconds': 60,
    },
    'exchanges': {
        'binance': {
            'enabled': True,
            'ccxt_id': 'binanceusdm',
            'market_type': 'future',
            'ws_base_url': 'wss://fstream.binance.com',
            'keepalive_interval_seconds': 30,
            'subscribe_batch_size': 0,
            'subscribe_batch_delay_seconds': 0.0,
            'network_timeout_ms': 10000,
        },
        'mexc': {
            'enabled': True,
            'ccxt_id': 'mexc',
            'market_type': 'swap',
            'ws_base_url': 'wss://contract.mexc.com/edge',
            'keepalive_interval_seconds': 15,
            'subscribe_batch_size': 20,
            'subscribe_batch_delay_seconds': 0.2,
            'network_timeout_ms': 10000,
        },
    },
    'arbitrage': {
        'min_spread_percent': 0.3,
        'min_profit_percent': 0.0,
        'top_pairs_count': 50,
        'reconnect_delay_seconds': 3.0,
        'exclude_pairs': [],
        'quote_assets': ['USDT'],
    },
    'notifications': {
        'min_spread_to_notify': 0.1,
    },
    'fees': {
        'binance': {'maker': 0.02, 'taker': 0.05},
        'mexc': {'maker': 0.0, 'taker': 0.02},
    },
    'slippage': {
        'percent': 0.1,
    },
    'trading': {
        'enabled': True,
        'test_balance_usd': 1000.0,
        'position_size_usd': 100.0,
        'leverage': 5,
        'max_open_positions': 3,
        'position_timeout_seconds': 3600,
        'close_on_spread_convergence': True,
        'min_profit_to_close_percent': 0.1,
        'close_on_new_opportunity': True,
    },
    'cooldown': {
        'cooldown_seconds': 0,
        'flash_threshold_seconds': 0,
        'max_flash_strikes': 3,
    },
    'audit': {
        'skipped_log': 'logs/skipped_opportunities.csv',
        'trade_log': 'logs/closed_pairings.csv',
    },
}


def _merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def build_config(overrides: dict = None) -> dict:
    """Defaults with `overrides` deep-merged on top, validated."""
    config = _merge(DEFAULT_CONFIG, overrides or {})
    validate_config(config)
    return config


def load_config(path: str = "config.yaml") -> dict:
    try:
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file {path} is not valid YAML: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")
    return build_config(raw)


def validate_config(config: dict):
    for venue in VENUES:
        if venue not in config['exchanges']:
            raise ConfigError(f"exchanges.{venue} section is required")
        if not config['exchanges'][venue].get('enabled', True):
            raise ConfigError(f"exchanges.{venue} must be enabled, both venues are required")
        if venue not in config['fees'] or 'taker' not in config['fees'][venue]:
            raise ConfigError(f"fees.{venue}.taker is required")
        if config['fees'][venue]['taker'] < 0:
            raise ConfigError(f"fees.{venue}.taker must be >= 0")

    arb = config['arbitrage']
    if arb['min_spread_percent'] < 0:
        raise ConfigError("arbitrage.min_spread_percent must be >= 0")
    if arb['top_pairs_count'] <= 0:
        raise ConfigError("arbitrage.top_pairs_count must be > 0")
    if arb['reconnect_delay_seconds'] < 0:
        raise ConfigError("arbitrage.reconnect_delay_seconds must be >= 0")
    if not arb['quote_assets']:
        raise ConfigError("arbitrage.quote_assets must list at least one asset")

    if config['slippage']['percent'] < 0:
        raise ConfigError("slippage.percent must be >= 0")

    trading = config['trading']
    if trading['max_open_positions'] <= 0:
        raise ConfigError("trading.max_open_positions must be > 0")
    if trading['position_size_usd'] <= 0:
        raise ConfigError("trading.position_size_usd must be > 0")
    if trading['leverage'] <= 0:
        raise ConfigError("trading.leverage must be > 0")
    if trading['position_timeout_seconds'] <= 0:
        raise ConfigError("trading.position_timeout_seconds must be > 0")

    if config['cooldown']['max_flash_strikes'] <= 0:
        raise ConfigError("cooldown.max_flash_strikes must be > 0")
