"""Send a single STK push without running the HTTP service.

Credentials are read from the environment / `.env`, like the service.
"""

import argparse
import logging

from config import Settings
from models import DEFAULT_PHONE_NUMBER
from mpesa import MpesaClient, MpesaError, SubmissionError


def main(argv=None) -> int:
    """Parse CLI args, send one push and print its CheckoutRequestID."""

    parser = argparse.ArgumentParser(description="Send one M-Pesa STK push.")
    parser.add_argument("--phone", default=DEFAULT_PHONE_NUMBER)
    parser.add_argument("--amount", type=float, default=1, help="Minimum amount for testing is 1")
    parser.add_argument("--reference", default="Test Payment")
    parser.add_argument("--description", default=None)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    client = MpesaClient(Settings())
    try:
        ack = client.initiate_push(
            args.amount,
            args.phone,
            args.reference,
            args.description or f"Test Payment to {args.phone}",
        )
    except (MpesaError, ValueError) as e:
        detail = e.error_body if isinstance(e, SubmissionError) else None
        print(f"Failed to send STK Push: {e}" + (f" ({detail})" if detail else ""))
        return 1

    print("STK Push sent successfully!")
    print(f"CheckoutRequestID: {ack.checkout_request_id}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
