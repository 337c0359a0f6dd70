"""
AWS Lambda handler for the Storage Arbitrage Optimizer

Marshals an event with a price series and battery parameters into an
optimize/analyze/backtest call and returns the result as a JSON response body.
"""

import json
import logging

from .backtest import Backtester
from .optimizer import ArbitrageOptimizer

# Configure logging for CloudWatch - let CloudWatch handle timestamps
logger = logging.getLogger()
logger.setLevel(logging.INFO)

if not any(getattr(h, '_arbitrage_lambda', False) for h in logger.handlers):
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter('%(levelname)s %(message)s'))
    handler._arbitrage_lambda = True
    logger.addHandler(handler)

CLIENT_ERRORS = {'input', 'insufficient_data'}


def _response(status: int, body: dict) -> dict:
    return {'statusCode': status, 'body': json.dumps(body)}


def _client_error(message: str) -> dict:
    return _response(400, {'success': False, 'error': message, 'errorType': 'input'})


def _backtest(event: dict, optimizer: ArbitrageOptimizer) -> dict:
    if not event.get('timestamps'):
        return _client_error('Backtest requires timestamps')
    try:
        summary = Backtester(optimizer, event.get('intervalMinutes', 60)).run(
            event['timestamps'],
            event['prices'],
            event['params'],
            event.get('periodType', 'monthly'),
            event.get('method', 'quantile'),
            event.get('options'),
            event.get('seed'),
        )
    except ValueError as e:
        logger.warning(f"Backtest rejected: {e}")
        return _client_error(str(e))
    return _response(200, {'success': True, **summary.to_dict()})


def lambda_handler(event, context):
    """
    AWS Lambda entry point.

    Event parameters:
    - mode: 'optimize' (default), 'analyze' or 'backtest'
    - prices: list of numbers (required)
    - timestamps: list of labels, same length as prices (required for backtest)
    - params: {pMax, socMin, socMax, efficiency, initialSOC?, targetSOC?} (optimize/backtest)
    - method / options: regime classification method and its options
    - periodType: daily/weekly/monthly/quarterly/yearly/continuous (backtest only)
    - intervalMinutes: spacing of the price series, 60 by default (backtest only)
    - seed: integer seed for a reproducible run
    """
    logger.info(f"Lambda invoked: mode={event.get('mode', 'optimize')} points={len(event.get('prices') or [])}")

    mode = event.get('mode', 'optimize')
    prices = event.get('prices')
    if not prices:
        return _client_error('No price data provided')
    if mode not in ('optimize', 'analyze', 'backtest'):
        return _client_error(f"Unknown mode: {mode}")
    if mode != 'analyze' and not event.get('params'):
        return _client_error('Missing battery params')

    optimizer = ArbitrageOptimizer(seed=event.get('seed'))
    method = event.get('method', 'quantile')
    options = event.get('options')

    try:
        if mode == 'backtest':
            return _backtest(event, optimizer)
        if mode == 'analyze':
            result = optimizer.analyze(prices, method, options)
        else:
            result = optimizer.optimize(prices, event['params'], method, options, event.get('timestamps'))
    except Exception as e:
        logger.exception(f"Lambda execution failed: {e}")
        return _response(500, {'success': False, 'error': str(e), 'errorType': type(e).__name__})

    if result.success:
        return _response(200, result.to_dict())
    status = 400 if result.error_type in CLIENT_ERRORS else 500
    return _response(status, result.to_dict())
