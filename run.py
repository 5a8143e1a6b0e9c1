#!/usr/bin/env python3
"""
Simple script to run the Storefront API server
"""

import uvicorn
from dotenv import load_dotenv

from storefront.config import get_settings

if __name__ == "__main__":
    load_dotenv()
    settings = get_settings()

    print("Starting Storefront API...")
    print(f"Server will be available at: http://{settings.host}:{settings.port}")
    print(f"API Documentation: http://{settings.host}:{settings.port}/docs")
    print(f"Payment gateway: {settings.payment_gateway}")
    print(f"Debug mode: {settings.debug}")
    print("-" * 50)

    uvicorn.run(
        "storefront.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="info" if not settings.debug else "debug"
    )
