#!/usr/bin/env python3
"""
Launcher for the passkey auth API.
"""
import logging
import sys

import uvicorn
from dotenv import load_dotenv

# Load environment variables before the config module reads them
load_dotenv()


def main():
    """Start the FastAPI server."""
    from passkey_auth.config import config
    from passkey_auth.app import create_app

    logging.basicConfig(
        level=config.LOG_LEVEL,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config.validate()
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(f"Starting passkey auth server on {config.API_HOST}:{config.API_PORT}")
    print(f"Relying Party ID: {config.WEBAUTHN_RP_ID}")
    print(f"Client Origin: {config.WEBAUTHN_ORIGIN}")

    uvicorn.run(
        create_app(config),
        host=config.API_HOST,
        port=config.API_PORT,
        log_level=config.LOG_LEVEL.lower()
    )


if __name__ == "__main__":
    main()
