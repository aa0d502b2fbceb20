#!/usr/bin/env python3
"""
Startup script for the LoyaltyGuard webhook server.

Usage:
    python run_api.py

Or with uvicorn directly:
    uvicorn loyaltyguard.api.main:app --host 0.0.0.0 --port 8080
"""

import os

import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "loyaltyguard.api.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8080")),
        log_level="info",
    )
