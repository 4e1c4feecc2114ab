#!/usr/bin/env python3
"""
Example: Simulate a gateway notification for testing.

This script builds a correctly signed Midtrans notification and posts it
to a running backend, so the state machine can be exercised without a
real payment.

Usage:
    python simulate_notification.py ORDER-1700000000000-abc123def 150000 settlement
    python simulate_notification.py ORDER-... 150000 capture --fraud challenge
    python simulate_notification.py ORDER-... 150000 settlement --bad-signature

Arguments:
    order_id: Order ID returned by create-transaction
    amount: Gross amount of the order
    status: Gateway transaction status to report
"""

import argparse
import asyncio
import json
import os
import sys
from datetime import datetime
from decimal import Decimal

import aiohttp

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config
from services.signature import compute_signature

STATUS_CODES = {
    'capture': '200',
    'settlement': '200',
    'refund': '200',
    'partial_refund': '200',
    'pending': '201',
    'authorize': '201',
    'deny': '202',
    'cancel': '202',
    'expire': '407',
}


def build_notification(
    order_id: str,
    amount: Decimal,
    status: str,
    server_key: str,
    fraud_status: str = None,
    payment_type: str = 'credit_card'
) -> dict:
    """Build a signed notification body the way the gateway sends it."""
    gross_amount = f"{amount:.2f}"
    status_code = STATUS_CODES.get(status, '200')

    notification = {
        'transaction_time': datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
        'transaction_status': status,
        'transaction_id': f"sim-{order_id}",
        'status_message': 'midtrans payment notification',
        'status_code': status_code,
        'signature_key': compute_signature(order_id, status_code, gross_amount, server_key),
        'payment_type': payment_type,
        'order_id': order_id,
        'gross_amount': gross_amount,
        'currency': 'IDR'
    }
    if fraud_status:
        notification['fraud_status'] = fraud_status

    return notification


async def simulate_notification(
    api_url: str,
    notification: dict
) -> dict:
    """Post a notification to the backend webhook."""
    async with aiohttp.ClientSession() as session:
        async with session.post(
            f"{api_url}/api/payment/notification",
            json=notification
        ) as response:
            body = await response.json()
            body['http_status'] = response.status
            return body


async def main():
    parser = argparse.ArgumentParser(
        description='Simulate a Midtrans payment notification'
    )
    parser.add_argument(
        'order_id',
        help='Order ID (e.g., ORDER-1700000000000-abc123def)'
    )
    parser.add_argument(
        'amount',
        type=Decimal,
        help='Gross amount (e.g., 150000)'
    )
    parser.add_argument(
        'status',
        choices=sorted(STATUS_CODES),
        help='Transaction status to report'
    )
    parser.add_argument(
        '--fraud',
        choices=['accept', 'challenge', 'deny'],
        help='Fraud status (for capture)'
    )
    parser.add_argument(
        '--bad-signature',
        action='store_true',
        help='Corrupt the signature to test rejection'
    )
    parser.add_argument(
        '--api-url',
        default='http://localhost:3000',
        help='API server URL (default: http://localhost:3000)'
    )

    args = parser.parse_args()

    config = Config.from_env()
    if not config.midtrans.server_key:
        print("❌ MIDTRANS_SERVER_KEY is not set")
        sys.exit(1)

    notification = build_notification(
        order_id=args.order_id,
        amount=args.amount,
        status=args.status,
        server_key=config.midtrans.server_key,
        fraud_status=args.fraud
    )

    if args.bad_signature:
        notification['signature_key'] = '0' * 128

    print("Sending notification:")
    print(json.dumps(notification, indent=2))
    print()

    try:
        result = await simulate_notification(args.api_url, notification)
    except aiohttp.ClientError as e:
        print(f"\n❌ Connection error: {e}")
        print("   Make sure the API server is running.")
        sys.exit(1)

    print("Response:")
    print(json.dumps(result, indent=2))


if __name__ == '__main__':
    asyncio.run(main())
