#!/usr/bin/env python3
"""
Conditional Escrow Entry Point

Starts the FastAPI server with the escrow engine. Host, port, admin identity,
initial balances and storage backend come from ESCROW_* environment variables.
"""

import sys

from conditional_escrow.api import run_server


if __name__ == "__main__":
    print("Starting Conditional Escrow Engine...")
    print("Audit trail active")

    try:
        run_server()
    except KeyboardInterrupt:
        print("\nShutting down Conditional Escrow Engine...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
