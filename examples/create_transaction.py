#!/usr/bin/env python3
"""
Example: Create a payment session.

This script demonstrates how a merchant front-end would request a Snap
token from the backend.

Usage:
    python create_transaction.py 150000 --name "Budi" --email budi@example.com

    # With a 30 minute expiry
    python create_transaction.py 150000 --expiry 30
"""

import argparse
import asyncio
import json
import sys
import aiohttp


async def create_transaction(
    api_url: str,
    amount: int,
    first_name: str,
    email: str,
    expiry_minutes: int = None
) -> dict:
    """Request a payment session for a single-item order."""
    payload = {
        "amount": amount,
        "customerDetails": {
            "first_name": first_name,
            "email": email
        },
        "itemDetails": [
            {
                "id": "ITEM-1",
                "price": amount,
                "quantity": 1,
                "name": "Example item"
            }
        ]
    }
    if expiry_minutes:
        payload["customExpiry"] = {
            "expiry_duration": expiry_minutes,
            "unit": "minute"
        }

    async with aiohttp.ClientSession() as session:
        async with session.post(
            f"{api_url}/api/payment/create-transaction",
            json=payload
        ) as response:
            return await response.json()


async def main():
    parser = argparse.ArgumentParser(
        description='Create a Midtrans payment session'
    )
    parser.add_argument(
        'amount',
        type=int,
        help='Gross amount in IDR'
    )
    parser.add_argument(
        '--name',
        default='Test Customer',
        help='Customer first name'
    )
    parser.add_argument(
        '--email',
        default='customer@example.com',
        help='Customer email'
    )
    parser.add_argument(
        '--expiry',
        type=int,
        help='Custom expiry in minutes (optional)'
    )
    parser.add_argument(
        '--api-url',
        default='http://localhost:3000',
        help='API server URL (default: http://localhost:3000)'
    )

    args = parser.parse_args()

    print(f"Creating transaction for {args.amount} IDR...")
    print()

    try:
        result = await create_transaction(
            api_url=args.api_url,
            amount=args.amount,
            first_name=args.name,
            email=args.email,
            expiry_minutes=args.expiry
        )

        print("Response:")
        print(json.dumps(result, indent=2))

        if result.get('success'):
            data = result.get('data', {})
            print("\n✅ Transaction created!")
            print(f"   Order ID: {data.get('order_id')}")
            print(f"   Pay at: {data.get('redirect_url')}")
        else:
            print(f"\n❌ Request failed: {result.get('message')}")
            sys.exit(1)

    except aiohttp.ClientError as e:
        print(f"\n❌ Connection error: {e}")
        print("   Make sure the API server is running.")
        sys.exit(1)


if __name__ == '__main__':
    asyncio.run(main())
