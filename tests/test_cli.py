"""
Tests for the command line entry point
Run with: pytest tests/test_cli.py -v
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import yaml

from arbitrage_optimizer import cli

PRICES = [50, 45, 40, 35, 30, 25, 60, 65, 70, 75, 80, 85,
          90, 95, 100, 105, 110, 115, 80, 75, 70, 65, 60, 55]
TIMESTAMPS = [f"2026-01-15T{h:02d}:00:00" for h in range(24)]


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump({
        'p_max': 5, 'soc_min': 10, 'soc_max': 50, 'efficiency': 0.85,
        'seed': 1, 'price_cache_dir': str(tmp_path / 'cache'),
    }))
    return str(path)


def mock_source(prices, timestamps):
    source = MagicMock()
    source.get_price_series = AsyncMock(return_value=(prices, timestamps))
    return source


class TestParseArgs:
    def test_defaults(self):
        args = cli.parse_args([])
        assert args.date is None
        assert args.days == 1
        assert args.config == 'config.yaml'
        assert args.quarter_hourly is False

    def test_overrides(self):
        args = cli.parse_args(['--date', '2026-01-15', '--days', '2', '--method', 'kmeans',
                               '--seed', '5', '--quarter-hourly'])
        assert args.days == 2
        assert args.method == 'kmeans'
        assert args.seed == 5
        assert args.quarter_hourly is True


class TestMain:
    def test_successful_run(self, config_path):
        with patch('arbitrage_optimizer.cli.PriceSource', return_value=mock_source(PRICES, TIMESTAMPS)) as src:
            code = cli.main(['--config', config_path, '--date', '2026-01-15'])
        assert code == 0
        src.return_value.get_price_series.assert_awaited_once()

    def test_no_prices(self, config_path):
        with patch('arbitrage_optimizer.cli.PriceSource', return_value=mock_source([], [])):
            assert cli.main(['--config', config_path]) == 1

    def test_optimization_failure(self, config_path):
        with patch('arbitrage_optimizer.cli.PriceSource',
                   return_value=mock_source(PRICES[:5], TIMESTAMPS[:5])):
            assert cli.main(['--config', config_path]) == 1

    def test_invalid_days(self, config_path):
        assert cli.main(['--config', config_path, '--days', '0']) == 2

    def test_missing_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert cli.main(['--config', str(tmp_path / 'absent.yaml')]) == 2

    def test_malformed_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        path = tmp_path / 'broken.yaml'
        path.write_text("p_max: [5\n")
        assert cli.main(['--config', str(path)]) == 2

    def test_invalid_date(self, config_path):
        with patch('arbitrage_optimizer.cli.PriceSource', return_value=mock_source(PRICES, TIMESTAMPS)):
            assert cli.main(['--config', config_path, '--date', '15/01/2026']) == 2
